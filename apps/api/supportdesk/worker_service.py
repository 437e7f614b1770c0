"""HTTP wrapper that runs the queue worker inside a web container.

Platforms that only keep processes alive while they answer health checks
run this instead of ``python -m supportdesk.worker``.
"""

from __future__ import annotations

import asyncio
import contextlib
import os

from fastapi import FastAPI

from supportdesk.db.session import SessionLocal, init_db
from supportdesk.services.job_service import queue_depths
from supportdesk.worker import worker_loop

app = FastAPI(title="supportdesk-worker")
_worker_task: asyncio.Task | None = None


def worker_running() -> bool:
    return bool(_worker_task and not _worker_task.done())


@app.get("/health")
def health() -> dict:
    db = SessionLocal()
    try:
        backlog = queue_depths(db)
    finally:
        db.close()
    return {"status": "ok", "worker_running": worker_running(), "pending_jobs": backlog}


@app.on_event("startup")
async def _start_worker() -> None:
    init_db()
    global _worker_task
    _worker_task = asyncio.create_task(worker_loop())


@app.on_event("shutdown")
async def _stop_worker() -> None:
    if _worker_task:
        _worker_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _worker_task


def main() -> None:
    import uvicorn

    # nosec B104 - containers must bind to all interfaces.
    uvicorn.run(
        "supportdesk.worker_service:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
    )


if __name__ == "__main__":
    main()
