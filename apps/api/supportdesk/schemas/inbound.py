"""Pydantic schemas for normalized inbound messages and routing results."""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from supportdesk.db.enums import ChannelPlatform

SUBJECT_MAX_LENGTH = 100


class CanonicalInboundMessage(BaseModel):
    """Platform-agnostic view of one inbound customer message.

    Built by a channel adapter and consumed immediately by the threader;
    never persisted as-is.
    """

    platform: ChannelPlatform
    external_message_id: str
    external_thread_key: str
    sender_external_id: str
    sender_display_name: str | None = None
    sender_email: str
    body: str
    subject: str | None = None
    raw_metadata: dict = Field(default_factory=dict)
    # Ticket-level keys seeded when a new ticket is opened
    thread_metadata: dict = Field(default_factory=dict)
    # Keys the next outbound reply must target (newest inbound message)
    reply_target: dict = Field(default_factory=dict)
    # Platform user ids/usernames checked against team members' linked identities
    identity_hints: list[str] = Field(default_factory=list)

    @field_validator("sender_email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def ticket_subject(self) -> str:
        subject = (self.subject or "").strip() or self.body.strip()
        return subject[:SUBJECT_MAX_LENGTH] or "(no subject)"


class RouteResult(BaseModel):
    """Outcome of threading one inbound message."""

    ticket_id: UUID
    is_new_ticket: bool
    message_id: UUID | None = None
    duplicate: bool = False


class IngestResult(BaseModel):
    """Outcome of the synchronous ingest path for one message."""

    status: str  # routed | duplicate | internal_sender | setup_code
    ticket_id: UUID | None = None
    is_new_ticket: bool = False
    triage_enqueued: bool = False
