"""Channel connection ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from supportdesk.db.base import Base, JSONType
from supportdesk.db.enums import ChannelPlatform, TrackerProvider
from supportdesk.db.types import enum_type, utcnow


class ChannelConnection(Base):
    """
    One messaging platform connected to an organization.

    Credentials are an opaque Fernet blob (see core.encryption); the core
    never stores them decrypted. ``sync_cursor`` is the polling watermark
    (Gmail history id, Telegram update offset, Discord snowflakes).
    """

    __tablename__ = "channel_connections"
    __table_args__ = (
        UniqueConstraint("organization_id", "platform", name="uq_channel_connection_platform"),
        Index("idx_channel_connections_account", "platform", "external_account_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    platform: Mapped[ChannelPlatform] = mapped_column(
        enum_type(ChannelPlatform, name="channel_platform"), nullable=False
    )
    external_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    credentials_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sync_cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    platform_metadata: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class TrackerConnection(Base):
    """Project tracker (ClickUp/Asana) used for recurring-issue tasks."""

    __tablename__ = "tracker_connections"
    __table_args__ = (
        UniqueConstraint("organization_id", "provider", name="uq_tracker_connection_provider"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[TrackerProvider] = mapped_column(
        enum_type(TrackerProvider, name="tracker_provider"), nullable=False
    )
    # ClickUp list id / Asana project id
    target_id: Mapped[str] = mapped_column(String(255), nullable=False)
    workspace_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    credentials_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
