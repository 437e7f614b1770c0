"""
Background worker for the durable job queues.

Usage:
    python -m supportdesk.worker

Each queue gets its own pool of ``WORKER_POOL_SIZE`` consumers, so a slow
recurring-issue run never starves ticket triage. Alongside the pools run a
watchdog that requeues stalled jobs and a scheduler tick that enqueues
periodic work.
"""

import asyncio
import logging

import sentry_sdk

from supportdesk.core.config import settings
from supportdesk.core.structured_logging import build_log_context
from supportdesk.db.enums import QueueName
from supportdesk.db.session import SessionLocal, init_db
from supportdesk.jobs.queues import policy_for
from supportdesk.jobs.registry import resolve_job_handler
from supportdesk.services import job_service
from supportdesk.services.scheduler_service import schedule_periodic_jobs

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

if settings.SENTRY_DSN:
    sentry_sdk.init(dsn=settings.SENTRY_DSN, environment=settings.ENV)


async def process_job(db, job) -> None:
    """Run one claimed job under its queue timeout."""
    logger.info(
        "Processing job %s (type=%s, attempt=%s/%s)",
        job.id,
        job.job_type,
        job.attempts,
        job.max_attempts,
        extra=build_log_context(org_id=job.organization_id, job_id=job.id, queue=job.queue),
    )
    handler = resolve_job_handler(job.job_type)
    await asyncio.wait_for(handler(db, job), timeout=policy_for(job.queue).timeout_seconds)


async def run_claimed_job(db, job) -> bool:
    """Execute a job already moved to running; returns True on success."""
    try:
        await process_job(db, job)
    except Exception as e:
        db.rollback()
        error_msg = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
        job_service.mark_job_failed(db, job, error_msg)
        logger.error("Job %s failed: %s", job.id, type(e).__name__)
        return False
    job_service.mark_job_completed(db, job)
    logger.info("Job %s completed successfully", job.id)
    return True


async def consume_once(queue: QueueName) -> bool:
    """Claim and run at most one due job; False when the queue was idle."""
    with SessionLocal() as db:
        jobs = job_service.claim_pending_jobs(db, queue, limit=1)
        if not jobs:
            return False
        await run_claimed_job(db, jobs[0])
        return True


async def queue_consumer(queue: QueueName, slot: int) -> None:
    logger.info("Consumer %s/%d started", queue.value, slot)
    while True:
        try:
            busy = await consume_once(queue)
        except Exception as e:
            logger.error("Error in %s consumer: %s", queue.value, e)
            busy = False
        if not busy:
            await asyncio.sleep(settings.WORKER_POLL_INTERVAL)


async def watchdog_loop() -> None:
    while True:
        await asyncio.sleep(settings.WORKER_WATCHDOG_INTERVAL)
        try:
            with SessionLocal() as db:
                stalled = job_service.requeue_stalled_jobs(db)
            if stalled:
                logger.warning("Watchdog requeued %d stalled jobs", stalled)
        except Exception as e:
            logger.error("Error in watchdog: %s", e)


async def scheduler_loop() -> None:
    while True:
        try:
            with SessionLocal() as db:
                schedule_periodic_jobs(db)
        except Exception as e:
            logger.error("Error in scheduler tick: %s", e)
        await asyncio.sleep(settings.WORKER_SCHEDULER_INTERVAL)


async def worker_loop() -> None:
    """Run every queue pool plus the watchdog and scheduler until cancelled."""
    logger.info(
        "Worker starting (queues: %d, pool size: %d, poll interval: %ss)",
        len(QueueName),
        settings.WORKER_POOL_SIZE,
        settings.WORKER_POLL_INTERVAL,
    )
    if not settings.RESEND_API_KEY:
        logger.warning("RESEND_API_KEY not set - emails will be logged but not sent")

    tasks = [
        asyncio.create_task(queue_consumer(queue, slot))
        for queue in QueueName
        for slot in range(1, settings.WORKER_POOL_SIZE + 1)
    ]
    tasks.append(asyncio.create_task(watchdog_loop()))
    tasks.append(asyncio.create_task(scheduler_loop()))
    try:
        await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def main() -> None:
    """Entry point for the worker."""
    init_db()
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        sentry_sdk.capture_exception()
        logger.exception(
            "Worker crashed",
            extra=build_log_context(route="worker", method="background"),
        )
        raise


if __name__ == "__main__":
    main()
