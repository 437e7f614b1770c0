"""Ticket and ticket message ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from supportdesk.db.base import Base, JSONType
from supportdesk.db.enums import (
    DEFAULT_TICKET_PRIORITY,
    DEFAULT_TICKET_STATUS,
    SenderType,
    TicketPriority,
    TicketStatus,
)
from supportdesk.db.types import enum_type, utcnow

if TYPE_CHECKING:
    from supportdesk.db.models import ChannelConnection, Organization

_OPEN_STATUS_CLAUSE = "status IN ('open', 'in_progress')"
_EXTERNAL_ID_CLAUSE = "external_message_id IS NOT NULL"


class Ticket(Base):
    """
    One customer conversation thread within an organization.

    At most one open/in_progress ticket may exist per (organization, source
    connection, customer email, thread key); the partial unique index below
    is what the threader relies on when two deliveries race.
    """

    __tablename__ = "tickets"
    __table_args__ = (
        Index(
            "uq_tickets_open_thread",
            "organization_id",
            "source_connection_id",
            "customer_email",
            "thread_key",
            unique=True,
            postgresql_where=text(_OPEN_STATUS_CLAUSE),
            sqlite_where=text(_OPEN_STATUS_CLAUSE),
        ),
        Index("idx_tickets_org_status", "organization_id", "status"),
        Index("idx_tickets_org_assignee", "organization_id", "assignee_user_id"),
        Index("idx_tickets_org_created", "organization_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    source_connection_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("channel_connections.id", ondelete="SET NULL"), nullable=True
    )
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_email: Mapped[str] = mapped_column(String(320), nullable=False)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[TicketStatus] = mapped_column(
        enum_type(TicketStatus, name="ticket_status"),
        nullable=False,
        default=DEFAULT_TICKET_STATUS,
    )
    priority: Mapped[TicketPriority] = mapped_column(
        enum_type(TicketPriority, name="ticket_priority"),
        nullable=False,
        default=DEFAULT_TICKET_PRIORITY,
    )
    assignee_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    thread_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    # Per-platform thread keys ("source", channel/chat/thread ids, latest reply target)
    ticket_metadata: Mapped[dict] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )
    assigned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_viewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    organization: Mapped["Organization"] = relationship()
    source_connection: Mapped["ChannelConnection | None"] = relationship()
    messages: Mapped[list["TicketMessage"]] = relationship(
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="TicketMessage.created_at",
    )


class TicketMessage(Base):
    """Append-only entry in a ticket timeline."""

    __tablename__ = "ticket_messages"
    __table_args__ = (
        Index("idx_ticket_messages_ticket_created", "ticket_id", "created_at"),
        Index(
            "uq_ticket_messages_external",
            "ticket_id",
            "external_message_id",
            unique=True,
            postgresql_where=text(_EXTERNAL_ID_CLAUSE),
            sqlite_where=text(_EXTERNAL_ID_CLAUSE),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    sender_type: Mapped[SenderType] = mapped_column(
        enum_type(SenderType, name="ticket_sender_type"), nullable=False
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    author_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    external_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Platform keys a reply to this message must target
    message_metadata: Mapped[dict] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    ticket: Mapped["Ticket"] = relationship(back_populates="messages")
