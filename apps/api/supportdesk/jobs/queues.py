"""Queue definitions and per-queue retry policy."""

from __future__ import annotations

from dataclasses import dataclass

from supportdesk.core.config import settings
from supportdesk.db.enums import JobType, QueueName


@dataclass(frozen=True)
class QueuePolicy:
    """Retry/timeout policy for one queue.

    ``max_attempts`` counts executions, so 3 means one try plus two retries.
    """

    queue: QueueName
    max_attempts: int
    base_delay_seconds: float
    timeout_seconds: float
    max_delay_seconds: float = 300.0

    def backoff_seconds(self, attempts_made: int) -> float:
        """Delay before the next attempt after ``attempts_made`` executions."""
        exponent = max(attempts_made - 1, 0)
        return min(self.max_delay_seconds, self.base_delay_seconds * (2**exponent))


QUEUE_POLICIES: dict[QueueName, QueuePolicy] = {
    QueueName.TICKET_PROCESSING: QueuePolicy(
        queue=QueueName.TICKET_PROCESSING,
        max_attempts=settings.QUEUE_TICKET_PROCESSING_ATTEMPTS,
        base_delay_seconds=settings.QUEUE_BASE_DELAY_SECONDS,
        timeout_seconds=120.0,
    ),
    # Mail delivery fails transiently more often; higher ceiling
    QueueName.OUTBOUND_EMAIL: QueuePolicy(
        queue=QueueName.OUTBOUND_EMAIL,
        max_attempts=settings.QUEUE_OUTBOUND_EMAIL_ATTEMPTS,
        base_delay_seconds=settings.QUEUE_BASE_DELAY_SECONDS,
        timeout_seconds=60.0,
    ),
    QueueName.RECURRING_ISSUE_DETECTION: QueuePolicy(
        queue=QueueName.RECURRING_ISSUE_DETECTION,
        max_attempts=settings.QUEUE_RECURRING_ISSUE_ATTEMPTS,
        base_delay_seconds=settings.QUEUE_BASE_DELAY_SECONDS,
        timeout_seconds=300.0,
    ),
    QueueName.ANALYTICS_AGGREGATION: QueuePolicy(
        queue=QueueName.ANALYTICS_AGGREGATION,
        max_attempts=settings.QUEUE_ANALYTICS_ATTEMPTS,
        base_delay_seconds=settings.QUEUE_BASE_DELAY_SECONDS,
        timeout_seconds=300.0,
    ),
}

JOB_QUEUES: dict[JobType, QueueName] = {
    JobType.TRIAGE_TICKET: QueueName.TICKET_PROCESSING,
    JobType.CHANNEL_SYNC: QueueName.TICKET_PROCESSING,
    JobType.SEND_EMAIL: QueueName.OUTBOUND_EMAIL,
    JobType.DETECT_RECURRING_ISSUES: QueueName.RECURRING_ISSUE_DETECTION,
    JobType.AGGREGATE_ANALYTICS: QueueName.ANALYTICS_AGGREGATION,
}


def queue_for(job_type: JobType | str) -> QueueName:
    return JOB_QUEUES[JobType(job_type)]


def policy_for(queue: QueueName | str) -> QueuePolicy:
    return QUEUE_POLICIES[QueueName(queue)]
