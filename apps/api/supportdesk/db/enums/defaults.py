"""Centralized defaults for enums."""

from supportdesk.db.enums.jobs import JobStatus
from supportdesk.db.enums.tickets import TicketPriority, TicketStatus


DEFAULT_JOB_STATUS: JobStatus = JobStatus.PENDING
DEFAULT_TICKET_STATUS: TicketStatus = TicketStatus.OPEN
DEFAULT_TICKET_PRIORITY: TicketPriority = TicketPriority.MEDIUM
