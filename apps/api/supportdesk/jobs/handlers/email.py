"""Outbound email job handler."""

from __future__ import annotations

from supportdesk.services import email_service


async def process_send_email(db, job) -> None:
    """Send a notification email.

    Payload:
        - to: recipient address
        - subject, text: message content
    """
    payload = job.payload or {}
    to_email = payload.get("to")
    if not to_email:
        raise ValueError("Missing to in job payload")
    await email_service.send_email(
        to_email,
        payload.get("subject") or "(no subject)",
        payload.get("text") or "",
        idempotency_key=f"send-email:{job.id}",
    )
