"""Job service - durable queue scheduling, claiming and retry bookkeeping."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from supportdesk.core.structured_logging import build_log_context
from supportdesk.db.enums import JobStatus, JobType, QueueName
from supportdesk.db.models import Job
from supportdesk.db.types import utcnow
from supportdesk.jobs.queues import policy_for, queue_for

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


def schedule_job(
    db: Session,
    org_id: UUID,
    job_type: JobType,
    payload: dict,
    run_at: datetime | None = None,
    idempotency_key: str | None = None,
) -> Job:
    """
    Schedule a new background job on the queue that owns its type.

    If run_at is None, the job runs immediately.
    If idempotency_key is provided, duplicate jobs with same key will fail
    with IntegrityError (caller should catch and handle).
    """
    queue = queue_for(job_type)
    policy = policy_for(queue)
    job = Job(
        organization_id=org_id,
        queue=queue.value,
        job_type=job_type.value,
        payload={"organization_id": str(org_id), **payload},
        run_at=run_at or utcnow(),
        status=JobStatus.PENDING.value,
        max_attempts=policy.max_attempts,
        idempotency_key=idempotency_key,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def claim_pending_jobs(db: Session, queue: QueueName, limit: int = 1) -> list[Job]:
    """Atomically move due jobs of one queue to running.

    Uses SKIP LOCKED so parallel workers never claim the same row.
    """
    now = utcnow()
    jobs = (
        db.query(Job)
        .filter(
            Job.queue == queue.value,
            Job.status == JobStatus.PENDING.value,
            Job.run_at <= now,
        )
        .order_by(Job.run_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )
    for job in jobs:
        job.status = JobStatus.RUNNING.value
        job.attempts += 1
        job.started_at = now
    db.commit()
    for job in jobs:
        db.refresh(job)
    return jobs


def mark_job_completed(db: Session, job: Job) -> Job:
    """Mark a job as completed."""
    job.status = JobStatus.COMPLETED.value
    job.completed_at = utcnow()
    job.last_error = None
    db.commit()
    db.refresh(job)
    return job


def mark_job_failed(db: Session, job: Job, error: str) -> Job:
    """
    Record a failed execution.

    If attempts < max_attempts the job goes back to pending with exponential
    backoff. Otherwise it becomes failed-terminal; that transition happens
    (and is logged) exactly once.

    Only a running job can fail: when the watchdog and the worker's own
    timeout both report the same attempt, the second report is dropped.
    """
    db.refresh(job)
    if job.status != JobStatus.RUNNING.value:
        logger.info(
            "Job %s already %s, ignoring failure report: %s",
            job.id,
            job.status,
            error,
            extra=build_log_context(org_id=job.organization_id, job_id=job.id, queue=job.queue),
        )
        return job

    job.last_error = (error or "unknown error")[:MAX_ERROR_LENGTH]
    if job.attempts < job.max_attempts:
        delay = policy_for(job.queue).backoff_seconds(job.attempts)
        job.status = JobStatus.PENDING.value
        job.run_at = utcnow() + timedelta(seconds=delay)
        logger.warning(
            "Job %s attempt %s/%s failed, retrying in %.1fs",
            job.id,
            job.attempts,
            job.max_attempts,
            delay,
            extra=build_log_context(org_id=job.organization_id, job_id=job.id, queue=job.queue),
        )
    else:
        job.status = JobStatus.FAILED.value
        job.completed_at = utcnow()
        logger.error(
            "Job %s (%s) failed permanently after %s attempts: %s",
            job.id,
            job.job_type,
            job.attempts,
            job.last_error,
            extra=build_log_context(org_id=job.organization_id, job_id=job.id, queue=job.queue),
        )
    db.commit()
    db.refresh(job)
    return job


def requeue_stalled_jobs(db: Session, now: datetime | None = None) -> int:
    """Treat running jobs past their queue timeout as failed attempts."""
    now = now or utcnow()
    running = db.query(Job).filter(Job.status == JobStatus.RUNNING.value).all()
    stalled = 0
    for job in running:
        timeout = policy_for(job.queue).timeout_seconds
        started_at = job.started_at or job.run_at
        if started_at + timedelta(seconds=timeout) > now:
            continue
        stalled += 1
        mark_job_failed(db, job, f"Stalled: exceeded {int(timeout)}s watchdog")
    return stalled


def queue_depths(db: Session) -> dict[str, int]:
    """Pending job count per queue (every queue present, zero when empty)."""
    rows = (
        db.query(Job.queue, func.count(Job.id))
        .filter(Job.status == JobStatus.PENDING.value)
        .group_by(Job.queue)
        .all()
    )
    depths = {queue.value: 0 for queue in QueueName}
    depths.update({queue: count for queue, count in rows})
    return depths


class JobOrchestrator:
    """Enqueue entry point handed to components that schedule follow-up work."""

    def enqueue(
        self,
        db: Session,
        org_id: UUID,
        job_type: JobType,
        payload: dict,
        *,
        idempotency_key: str | None = None,
        run_at: datetime | None = None,
    ) -> Job | None:
        """Schedule a job; returns None when the idempotency key already exists."""
        try:
            return schedule_job(
                db=db,
                org_id=org_id,
                job_type=job_type,
                payload=payload,
                run_at=run_at,
                idempotency_key=idempotency_key,
            )
        except IntegrityError:
            db.rollback()
            logger.info(
                "Duplicate job skipped: %s",
                idempotency_key,
                extra=build_log_context(org_id=org_id),
            )
            return None


_orchestrator: JobOrchestrator | None = None


def get_orchestrator() -> JobOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = JobOrchestrator()
    return _orchestrator
