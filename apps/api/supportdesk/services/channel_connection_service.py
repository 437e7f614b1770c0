"""Channel connection lookups and credential bookkeeping."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from supportdesk.core.encryption import decrypt_credentials, encrypt_credentials
from supportdesk.core.structured_logging import build_log_context
from supportdesk.db.enums import ChannelPlatform
from supportdesk.db.models import ChannelConnection
from supportdesk.db.types import utcnow

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500


def get_connection(db: Session, connection_id: UUID) -> ChannelConnection | None:
    return db.get(ChannelConnection, connection_id)


def get_org_connection(
    db: Session, organization_id: UUID, platform: ChannelPlatform
) -> ChannelConnection | None:
    return (
        db.query(ChannelConnection)
        .filter(
            ChannelConnection.organization_id == organization_id,
            ChannelConnection.platform == platform,
        )
        .first()
    )


def find_by_account(
    db: Session, platform: ChannelPlatform, external_account_id: str
) -> ChannelConnection | None:
    """Active connection for a platform account (team, guild, page, number...)."""
    return (
        db.query(ChannelConnection)
        .filter(
            ChannelConnection.platform == platform,
            ChannelConnection.external_account_id == external_account_id,
            ChannelConnection.is_active.is_(True),
        )
        .order_by(ChannelConnection.created_at.asc())
        .first()
    )


def list_active_connections(
    db: Session, platforms: list[ChannelPlatform] | None = None
) -> list[ChannelConnection]:
    query = db.query(ChannelConnection).filter(ChannelConnection.is_active.is_(True))
    if platforms:
        query = query.filter(ChannelConnection.platform.in_(platforms))
    return query.order_by(ChannelConnection.created_at.asc()).all()


def upsert_connection(
    db: Session,
    *,
    organization_id: UUID,
    platform: ChannelPlatform,
    external_account_id: str | None,
    credentials: dict | None = None,
    platform_metadata: dict | None = None,
) -> ChannelConnection:
    """Create or re-activate the organization's connection for a platform."""
    connection = get_org_connection(db, organization_id, platform)
    now = utcnow()
    if connection is None:
        connection = ChannelConnection(
            organization_id=organization_id,
            platform=platform,
            created_at=now,
        )
    connection.external_account_id = external_account_id
    if credentials is not None:
        connection.credentials_encrypted = encrypt_credentials(credentials)
    if platform_metadata is not None:
        connection.platform_metadata = {**(connection.platform_metadata or {}), **platform_metadata}
    connection.is_active = True
    connection.last_error = None
    connection.updated_at = now
    db.add(connection)
    db.commit()
    db.refresh(connection)
    return connection


def get_or_create_widget_connection(db: Session, organization_id: UUID) -> ChannelConnection:
    connection = get_org_connection(db, organization_id, ChannelPlatform.WIDGET)
    if connection is not None:
        return connection
    return upsert_connection(
        db,
        organization_id=organization_id,
        platform=ChannelPlatform.WIDGET,
        external_account_id=str(organization_id),
    )


def deactivate_connection(db: Session, connection: ChannelConnection) -> None:
    connection.is_active = False
    connection.updated_at = utcnow()
    db.add(connection)
    db.commit()


def load_credentials(connection: ChannelConnection) -> dict:
    """Decrypted credentials; ValueError if the blob cannot be decrypted."""
    return decrypt_credentials(connection.credentials_encrypted)


def store_credentials(db: Session, connection: ChannelConnection, credentials: dict) -> None:
    connection.credentials_encrypted = encrypt_credentials(credentials)
    connection.updated_at = utcnow()
    db.add(connection)
    db.commit()


def record_error(db: Session, connection: ChannelConnection, error: str) -> None:
    """Flag the connection so an admin sees why delivery or sync is failing."""
    connection.last_error = (error or "unknown error")[:MAX_ERROR_LENGTH]
    connection.updated_at = utcnow()
    db.add(connection)
    db.commit()
    logger.warning(
        "Channel connection flagged: %s",
        connection.last_error,
        extra=build_log_context(org_id=connection.organization_id, platform=connection.platform.value),
    )


def record_sync(db: Session, connection: ChannelConnection, cursor: str | None) -> None:
    connection.sync_cursor = cursor
    connection.last_synced_at = utcnow()
    connection.last_error = None
    db.add(connection)
    db.commit()
