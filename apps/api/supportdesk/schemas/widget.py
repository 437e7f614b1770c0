"""Pydantic schemas for the embeddable web widget."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class WidgetMessageCreate(BaseModel):
    """Message posted by a site visitor."""

    visitor_id: str = Field(min_length=1, max_length=128)
    session_id: str = Field(min_length=1, max_length=128)
    content: str = Field(min_length=1, max_length=10000)
    customer_email: str | None = Field(default=None, max_length=320)
    customer_name: str | None = Field(default=None, max_length=255)
    page_url: str | None = Field(default=None, max_length=2048)
    # Lets the widget retry a send without duplicating the message
    client_message_id: str | None = Field(default=None, max_length=128)


class WidgetMessageAccepted(BaseModel):
    ticket_id: UUID | None = None
    is_new_ticket: bool = False
    status: str


class WidgetMessageRead(BaseModel):
    """Timeline entry visible to the visitor (internal notes excluded)."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sender_type: str
    body: str
    created_at: datetime
