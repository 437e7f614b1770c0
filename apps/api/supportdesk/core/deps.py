"""FastAPI dependencies for database access and job orchestration."""

from typing import Generator

from sqlalchemy.orm import Session

from supportdesk.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_ingest_service():
    """Ingest pipeline wired to the process-wide job orchestrator."""
    from supportdesk.services.ingest_service import get_ingest_service as _get

    return _get()
