"""Job-related enums."""

from enum import Enum


class QueueName(str, Enum):
    """Durable job queues."""

    TICKET_PROCESSING = "ticket-processing"
    OUTBOUND_EMAIL = "outbound-email"
    RECURRING_ISSUE_DETECTION = "recurring-issue-detection"
    ANALYTICS_AGGREGATION = "analytics-aggregation"


class JobType(str, Enum):
    """Types of background jobs."""

    TRIAGE_TICKET = "triage_ticket"
    CHANNEL_SYNC = "channel_sync"  # Poll/history sync for a channel connection
    SEND_EMAIL = "send_email"
    DETECT_RECURRING_ISSUES = "detect_recurring_issues"
    AGGREGATE_ANALYTICS = "aggregate_analytics"


class JobStatus(str, Enum):
    """Status of background jobs."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
