"""Ticket triage job handler."""

from __future__ import annotations

import logging
from uuid import UUID

from supportdesk.core.structured_logging import build_log_context
from supportdesk.db.enums import TicketStatus
from supportdesk.db.models import OrganizationMember
from supportdesk.jobs.utils import payload_uuid
from supportdesk.services.email_service import queue_assignment_notification
from supportdesk.services.relay_service import get_relay
from supportdesk.services.ticket_repository import ticket_repository
from supportdesk.services.triage_service import get_triage_engine, load_triage_context

logger = logging.getLogger(__name__)


def _member_email(db, organization_id: UUID, user_id: UUID) -> str | None:
    member = (
        db.query(OrganizationMember)
        .filter(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.user_id == user_id,
        )
        .first()
    )
    return member.email if member else None


async def process_triage_ticket(db, job) -> None:
    """Answer the ticket automatically or hand it to a team member.

    Payload:
        - ticket_id: ticket to triage
        - message_id: customer message that triggered triage (optional)
    """
    payload = job.payload or {}
    ticket_id = payload_uuid(payload, "ticket_id")
    message_id = UUID(str(payload["message_id"])) if payload.get("message_id") else None
    log_context = build_log_context(
        org_id=job.organization_id, job_id=job.id, queue=job.queue, ticket_id=ticket_id
    )

    ticket = ticket_repository.get(db, ticket_id)
    if ticket is None:
        logger.warning("Triage skipped: ticket not found", extra=log_context)
        return
    if ticket.status == TicketStatus.CLOSED:
        logger.info("Triage skipped: ticket already closed", extra=log_context)
        return
    if ticket.assignee_user_id is not None:
        logger.info("Triage skipped: ticket owned by a team member", extra=log_context)
        return

    context = load_triage_context(db, ticket_id, message_id)
    if context is None:
        return
    decision = await get_triage_engine().triage(context)

    if decision.should_respond and decision.response:
        delivered = await get_relay().deliver(db, ticket_id, decision.response)
        ticket = ticket_repository.get(db, ticket_id)
        ticket_repository.merge_metadata(
            ticket,
            {"aiResolved": True, "aiConfidence": decision.confidence, "aiDelivered": delivered},
        )
        ticket_repository.close(db, ticket)
        db.commit()
        logger.info(
            "Ticket auto-resolved (confidence=%.2f delivered=%s)",
            decision.confidence,
            delivered,
            extra=log_context,
        )
        return

    if decision.should_assign and decision.assignee_id is not None:
        ticket_repository.assign(db, ticket, decision.assignee_id)
        ticket_repository.merge_metadata(
            ticket, {"aiConfidence": decision.confidence, "triageReason": decision.reason}
        )
        db.commit()
        logger.info(
            "Ticket handed off (reason=%s confidence=%.2f)",
            decision.reason,
            decision.confidence,
            extra=log_context,
        )
        email = _member_email(db, ticket.organization_id, decision.assignee_id)
        if email:
            queue_assignment_notification(db, ticket, email)
        return

    logger.warning(
        "Ticket left unassigned: no active team members (reason=%s)",
        decision.reason,
        extra=log_context,
    )
