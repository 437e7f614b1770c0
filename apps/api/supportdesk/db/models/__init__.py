"""SQLAlchemy ORM models."""

from supportdesk.db.models.analytics import AnalyticsSnapshot
from supportdesk.db.models.channels import ChannelConnection, TrackerConnection
from supportdesk.db.models.jobs import Job
from supportdesk.db.models.organizations import (
    AgentSource,
    Organization,
    OrganizationMember,
    SupportAgent,
)
from supportdesk.db.models.tickets import Ticket, TicketMessage

__all__ = [
    "AgentSource",
    "AnalyticsSnapshot",
    "ChannelConnection",
    "Job",
    "Organization",
    "OrganizationMember",
    "SupportAgent",
    "Ticket",
    "TicketMessage",
    "TrackerConnection",
]
