"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from supportdesk.db.enums import JobType
from supportdesk.jobs.handlers import analytics, channels, email, recurring, tickets

JobHandler = Callable[[object, object], Awaitable[None]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.TRIAGE_TICKET.value: tickets.process_triage_ticket,
    JobType.CHANNEL_SYNC.value: channels.process_channel_sync,
    JobType.SEND_EMAIL.value: email.process_send_email,
    JobType.DETECT_RECURRING_ISSUES.value: recurring.process_detect_recurring_issues,
    JobType.AGGREGATE_ANALYTICS.value: analytics.process_aggregate_analytics,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job_type}")
    return handler
