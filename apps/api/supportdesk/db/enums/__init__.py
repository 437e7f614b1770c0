"""Enum definitions for application constants."""

from supportdesk.db.enums.ai import AIProviderKind, AssignmentStrategy
from supportdesk.db.enums.channels import ChannelPlatform, TrackerProvider
from supportdesk.db.enums.defaults import (
    DEFAULT_JOB_STATUS,
    DEFAULT_TICKET_PRIORITY,
    DEFAULT_TICKET_STATUS,
)
from supportdesk.db.enums.jobs import JobStatus, JobType, QueueName
from supportdesk.db.enums.tickets import (
    OPEN_TICKET_STATUSES,
    AnalyticsPeriod,
    SenderType,
    TicketPriority,
    TicketStatus,
)

__all__ = [
    "AIProviderKind",
    "AnalyticsPeriod",
    "AssignmentStrategy",
    "ChannelPlatform",
    "DEFAULT_JOB_STATUS",
    "DEFAULT_TICKET_PRIORITY",
    "DEFAULT_TICKET_STATUS",
    "JobStatus",
    "JobType",
    "OPEN_TICKET_STATUSES",
    "QueueName",
    "SenderType",
    "TicketPriority",
    "TicketStatus",
    "TrackerProvider",
]
