"""Outbound notification email via the Resend HTTP API.

Without ``RESEND_API_KEY`` sends are logged and skipped (dry run).
"""

from __future__ import annotations

import logging

import httpx
from sqlalchemy.orm import Session

from supportdesk.core.config import settings
from supportdesk.db.enums import JobType, TicketPriority
from supportdesk.db.models import Job, Organization, Ticket
from supportdesk.jobs.utils import mask_email
from supportdesk.services.http_service import (
    DEFAULT_RETRY_STATUSES,
    ExternalAPIError,
    request_with_retries,
)
from supportdesk.services.job_service import JobOrchestrator, get_orchestrator

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
RESEND_MAX_ATTEMPTS = 3
RESEND_TIMEOUT_SECONDS = 20.0


async def send_email(
    to_email: str,
    subject: str,
    text: str,
    *,
    idempotency_key: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> str | None:
    """Send one plain-text email; returns the provider message id."""
    if not settings.RESEND_API_KEY:
        logger.info("[DRY RUN] Email send skipped for recipient=%s", mask_email(to_email))
        return None

    headers = {"Authorization": f"Bearer {settings.RESEND_API_KEY}"}
    if idempotency_key:
        headers["Idempotency-Key"] = idempotency_key
    payload = {"from": settings.EMAIL_FROM, "to": [to_email], "subject": subject, "text": text}

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=RESEND_TIMEOUT_SECONDS)
    try:
        response = await request_with_retries(
            lambda: client.post(RESEND_SEND_URL, headers=headers, json=payload),
            max_attempts=RESEND_MAX_ATTEMPTS,
            retry_statuses=DEFAULT_RETRY_STATUSES,
        )
    finally:
        if owns_client:
            await client.aclose()

    # 409 is an idempotency replay: the message already went out
    if response.status_code == 409 or 200 <= response.status_code < 300:
        try:
            data = response.json()
        except ValueError:
            data = {}
        message_id = data.get("id") if isinstance(data, dict) else None
        logger.info("Email sent recipient=%s message_id=%s", mask_email(to_email), message_id)
        return message_id
    raise ExternalAPIError("resend", response.status_code, response.text[:200])


def queue_assignment_notification(
    db: Session,
    ticket: Ticket,
    assignee_email: str,
    orchestrator: JobOrchestrator | None = None,
) -> Job | None:
    """Enqueue the 'ticket assigned to you' email for a handed-off ticket."""
    org = db.get(Organization, ticket.organization_id)
    org_name = org.name if org is not None else "Support"
    orchestrator = orchestrator or get_orchestrator()
    return orchestrator.enqueue(
        db,
        ticket.organization_id,
        JobType.SEND_EMAIL,
        {
            "ticket_id": str(ticket.id),
            "to": assignee_email,
            "subject": f"[{org_name}] Ticket assigned: {ticket.subject}",
            "text": (
                f"A ticket from {ticket.customer_name or ticket.customer_email} was assigned to you.\n\n"
                f"Subject: {ticket.subject}\n"
                f"Priority: {TicketPriority(ticket.priority).value}\n"
            ),
        },
        idempotency_key=f"assign-notify:{ticket.id}:{assignee_email.lower()}",
    )
