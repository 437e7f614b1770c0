"""Webhooks router - inbound traffic from every messaging platform.

One pair of routes serves all platforms; the adapter for ``{platform}``
does the platform-specific work. The optional ``{connection_id}`` path
segment pins the connection for platforms whose payloads carry no account
id the connection could be looked up by.
"""

import logging
from uuid import UUID

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from supportdesk.core.config import settings
from supportdesk.core.deps import get_db, get_ingest_service
from supportdesk.core.rate_limit import WEBHOOK_LIMIT, limiter
from supportdesk.core.structured_logging import build_log_context
from supportdesk.db.enums import ChannelPlatform, JobType
from supportdesk.db.models import ChannelConnection
from supportdesk.services import channel_connection_service, telegram_setup_service
from supportdesk.services.channels import ChannelAdapter, ReplyTarget, get_adapter
from supportdesk.services.ingest_service import IngestService
from supportdesk.services.job_service import get_orchestrator
from supportdesk.services.scheduler_service import channel_sync_key

router = APIRouter()
logger = logging.getLogger(__name__)

TELEGRAM_LINKED_TEXT = "This chat is now connected to support. Messages sent here will open tickets."
TELEGRAM_REJECTED_TEXT = "That setup code is invalid or expired. Generate a new one and try again."


def _adapter_for(platform: str) -> ChannelAdapter:
    try:
        adapter = get_adapter(platform)
    except KeyError:
        raise HTTPException(404, "Unknown platform")
    if adapter.platform == ChannelPlatform.WIDGET:
        raise HTTPException(404, "Unknown platform")
    return adapter


def _signed_url(request: Request) -> str:
    """URL the platform signed; rebuilt from PUBLIC_BASE_URL behind proxies."""
    if not settings.PUBLIC_BASE_URL:
        return str(request.url)
    url = settings.PUBLIC_BASE_URL.rstrip("/") + request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return url


def _pinned_connection(
    db: Session, adapter: ChannelAdapter, connection_id: UUID | None
) -> ChannelConnection | None:
    if connection_id is None:
        return None
    connection = channel_connection_service.get_connection(db, connection_id)
    if connection is None or not connection.is_active or connection.platform != adapter.platform:
        raise HTTPException(404, "Connection not found")
    return connection


def _connection_secret(adapter: ChannelAdapter, connection: ChannelConnection | None) -> str | None:
    credentials: dict = {}
    metadata: dict = {}
    if connection is not None:
        metadata = connection.platform_metadata or {}
        try:
            credentials = channel_connection_service.load_credentials(connection)
        except ValueError:
            logger.warning(
                "Webhook credentials unreadable, falling back to app secret",
                extra=build_log_context(org_id=connection.organization_id, platform=adapter.platform.value),
            )
    return adapter.signing_secret(credentials, metadata)


async def _reply_to_setup(adapter: ChannelAdapter, chat_id: str, linked: bool) -> None:
    """Tell the chat whether /connect worked; failures only get logged."""
    if not settings.TELEGRAM_BOT_TOKEN:
        return
    target = ReplyTarget(thread_key=chat_id, customer_email="", keys={"telegramChatId": chat_id})
    text = TELEGRAM_LINKED_TEXT if linked else TELEGRAM_REJECTED_TEXT
    try:
        async with httpx.AsyncClient(timeout=settings.CHANNEL_SEND_TIMEOUT_SECONDS) as client:
            await adapter.send_reply(client, {"bot_token": settings.TELEGRAM_BOT_TOKEN}, target, text)
    except Exception as e:
        logger.warning("Telegram setup reply failed: %s", type(e).__name__)


async def _receive(
    request: Request,
    platform: str,
    connection_id: UUID | None,
    db: Session,
    ingest_service: IngestService,
):
    adapter = _adapter_for(platform)

    # 1. Check payload size
    content_length = request.headers.get("content-length", "0")
    try:
        if int(content_length) > settings.WEBHOOK_MAX_PAYLOAD_BYTES:
            raise HTTPException(413, "Payload too large")
    except ValueError:
        pass
    body = await request.body()
    if len(body) > settings.WEBHOOK_MAX_PAYLOAD_BYTES:
        raise HTTPException(413, "Payload too large")

    # 2. Parse payload
    try:
        payload = adapter.parse(body, request.headers)
    except ValueError:
        raise HTTPException(400, "Invalid payload")

    # 3. Resolve the connection (may not exist yet for handshakes and setup codes)
    connection = _pinned_connection(db, adapter, connection_id)
    if connection is None:
        account = adapter.account_key(payload)
        if account:
            connection = channel_connection_service.find_by_account(db, adapter.platform, str(account))

    # 4. Verify the request came from the platform
    secret = _connection_secret(adapter, connection)
    if adapter.signature_required and not secret:
        logger.warning("%s webhook rejected: no signing secret configured", adapter.platform.value)
        raise HTTPException(401, "Invalid signature")
    if not adapter.verify_signature(
        body, request.headers, url=_signed_url(request), secret=secret, payload=payload
    ):
        logger.warning("%s webhook invalid signature", adapter.platform.value)
        raise HTTPException(401, "Invalid signature")

    # 5. Subscription handshakes
    handshake = adapter.handshake(payload)
    if handshake is not None:
        return handshake

    log_context = build_log_context(platform=adapter.platform.value)
    if connection is None:
        code = adapter.setup_code(payload)
        if code:
            chat_id = adapter.account_key(payload)
            linked = telegram_setup_service.link_chat(db, code, chat_id, _chat_title(payload))
            await _reply_to_setup(adapter, chat_id, linked is not None)
            return {"ok": True, "linked": linked is not None}
        logger.info("Webhook for unknown %s account ignored", adapter.platform.value, extra=log_context)
        raise HTTPException(404, "Connection not found")

    log_context["org_id"] = str(connection.organization_id)

    if adapter.disconnects(payload):
        channel_connection_service.deactivate_connection(db, connection)
        logger.info("%s connection deactivated by platform", adapter.platform.value, extra=log_context)
        return {"ok": True, "disconnected": True}

    # 6. Push-to-poll platforms: schedule a sync instead of ingesting
    marker = adapter.sync_marker(payload)
    if marker:
        get_orchestrator().enqueue(
            db,
            connection.organization_id,
            JobType.CHANNEL_SYNC,
            {"connection_id": str(connection.id)},
            idempotency_key=channel_sync_key(connection.id, marker),
        )
        return adapter.acknowledge(payload, 0) or {"ok": True}

    # 7. Normalize and ingest every message event
    ingested = 0
    for event in adapter.extract_events(payload):
        try:
            message = adapter.normalize(event)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Unparseable %s event skipped: %s", adapter.platform.value, e, extra=log_context)
            continue
        if message is None:
            continue
        result = ingest_service.ingest(db, connection, message)
        ingested += result.status == "routed"

    return adapter.acknowledge(payload, ingested) or {"ok": True, "ingested": ingested}


def _chat_title(payload: dict) -> str | None:
    message = payload.get("message") or payload.get("channel_post") or {}
    chat = message.get("chat") or {}
    return chat.get("title") or chat.get("username")


def _verify_challenge(request: Request, platform: str, connection_id: UUID | None, db: Session):
    adapter = _adapter_for(platform)
    connection = _pinned_connection(db, adapter, connection_id)
    answer = adapter.verify_challenge(request.query_params, _connection_secret(adapter, connection))
    if answer is None:
        logger.warning("%s webhook verification failed", adapter.platform.value)
        raise HTTPException(status_code=403, detail="Verification failed")
    if isinstance(answer, str):
        # Meta expects the challenge echoed as plain text
        return PlainTextResponse(answer)
    return answer


@router.get("/{platform}")
@limiter.limit(WEBHOOK_LIMIT)
async def verify_webhook(request: Request, platform: str, db: Session = Depends(get_db)):
    """Subscription challenge (Meta hub.challenge, X CRC)."""
    return _verify_challenge(request, platform, None, db)


@router.get("/{platform}/{connection_id}")
@limiter.limit(WEBHOOK_LIMIT)
async def verify_connection_webhook(
    request: Request, platform: str, connection_id: UUID, db: Session = Depends(get_db)
):
    return _verify_challenge(request, platform, connection_id, db)


@router.post("/{platform}")
@limiter.limit(WEBHOOK_LIMIT)
async def receive_webhook(
    request: Request,
    platform: str,
    db: Session = Depends(get_db),
    ingest_service: IngestService = Depends(get_ingest_service),
):
    """
    Receive a platform webhook.

    Security:
    - Validates the platform signature against the connection's secret
    - Validates payload size
    - Only ingests for an active connection

    Processing:
    - Thread/ticket routing happens inline; triage and replies are queued
    """
    return await _receive(request, platform, None, db, ingest_service)


@router.post("/{platform}/{connection_id}")
@limiter.limit(WEBHOOK_LIMIT)
async def receive_connection_webhook(
    request: Request,
    platform: str,
    connection_id: UUID,
    db: Session = Depends(get_db),
    ingest_service: IngestService = Depends(get_ingest_service),
):
    return await _receive(request, platform, connection_id, db, ingest_service)
