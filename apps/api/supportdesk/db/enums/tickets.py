"""Ticket lifecycle enums."""

from enum import Enum


class TicketStatus(str, Enum):
    """Ticket lifecycle status."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


OPEN_TICKET_STATUSES = (TicketStatus.OPEN, TicketStatus.IN_PROGRESS)


class TicketPriority(str, Enum):
    """Ticket priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class SenderType(str, Enum):
    """Who authored a ticket message."""

    CUSTOMER = "customer"
    AGENT = "agent"
    SYSTEM = "system"


class AnalyticsPeriod(str, Enum):
    """Aggregation windows for ticket analytics."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
