"""Telegram chat linking via short-lived setup codes.

An admin generates a code; someone in the target chat sends
``/connect CODE`` to the shared bot. Codes are 6 hex characters, live ten
minutes, work once, and each organization holds at most one live code.
"""

from __future__ import annotations

import logging
import secrets
from uuid import UUID

from sqlalchemy.orm import Session

from supportdesk.core.config import settings
from supportdesk.core.structured_logging import build_log_context
from supportdesk.core.ttl_cache import TTLCache, get_ttl_cache
from supportdesk.db.enums import ChannelPlatform
from supportdesk.db.models import ChannelConnection
from supportdesk.services import channel_connection_service

logger = logging.getLogger(__name__)

SETUP_CODE_TTL_SECONDS = 10 * 60


def _code_key(code: str) -> str:
    return f"telegram-setup:code:{code.upper()}"


def _org_key(organization_id: UUID) -> str:
    return f"telegram-setup:org:{organization_id}"


def generate_setup_code(organization_id: UUID, cache: TTLCache | None = None) -> str:
    """Issue a fresh code, revoking the organization's previous one."""
    cache = cache or get_ttl_cache()
    previous = cache.pop(_org_key(organization_id))
    if previous:
        cache.delete(_code_key(previous))

    code = secrets.token_hex(3).upper()
    cache.set(_code_key(code), str(organization_id), SETUP_CODE_TTL_SECONDS)
    cache.set(_org_key(organization_id), code, SETUP_CODE_TTL_SECONDS)
    return code


def consume_setup_code(code: str, cache: TTLCache | None = None) -> UUID | None:
    """Return the organization for a live code and invalidate it."""
    cache = cache or get_ttl_cache()
    value = cache.pop(_code_key(code.strip()))
    if not value:
        return None
    organization_id = UUID(value)
    cache.delete(_org_key(organization_id))
    return organization_id


def link_chat(
    db: Session,
    code: str,
    chat_id: str,
    chat_title: str | None = None,
    cache: TTLCache | None = None,
) -> ChannelConnection | None:
    """Bind a Telegram chat to the organization that issued ``code``."""
    organization_id = consume_setup_code(code, cache)
    if organization_id is None:
        logger.info("Telegram setup code rejected", extra=build_log_context(platform="telegram"))
        return None

    existing = channel_connection_service.get_org_connection(db, organization_id, ChannelPlatform.TELEGRAM)
    credentials = None
    if existing is None or not existing.credentials_encrypted:
        credentials = {"bot_token": settings.TELEGRAM_BOT_TOKEN} if settings.TELEGRAM_BOT_TOKEN else {}
    connection = channel_connection_service.upsert_connection(
        db,
        organization_id=organization_id,
        platform=ChannelPlatform.TELEGRAM,
        external_account_id=str(chat_id),
        credentials=credentials,
        platform_metadata={"chat_title": chat_title} if chat_title else {},
    )
    logger.info(
        "Telegram chat linked",
        extra=build_log_context(org_id=organization_id, platform="telegram"),
    )
    return connection
