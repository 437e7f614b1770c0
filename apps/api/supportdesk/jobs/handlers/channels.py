"""Channel sync job handler (history/poll fetch for pull-based platforms)."""

from __future__ import annotations

import logging

import httpx

from supportdesk.core.config import settings
from supportdesk.core.structured_logging import build_log_context
from supportdesk.jobs.utils import payload_uuid
from supportdesk.services import channel_connection_service
from supportdesk.services.channels import get_adapter, is_polling
from supportdesk.services.http_service import ExternalAPIError
from supportdesk.services.ingest_service import get_ingest_service

logger = logging.getLogger(__name__)


async def _fetch(adapter, client, db, connection, credentials: dict):
    try:
        return await adapter.fetch_new_since(
            client, credentials, connection.sync_cursor, connection.platform_metadata or {}
        )
    except ExternalAPIError as exc:
        if not exc.permanent:
            raise
        refreshed = await adapter.refresh_credentials(client, credentials)
        if not refreshed:
            channel_connection_service.record_error(db, connection, str(exc))
            raise
        channel_connection_service.store_credentials(db, connection, refreshed)
        try:
            return await adapter.fetch_new_since(
                client, refreshed, connection.sync_cursor, connection.platform_metadata or {}
            )
        except ExternalAPIError as retry_exc:
            if retry_exc.permanent:
                channel_connection_service.record_error(db, connection, str(retry_exc))
            raise


async def process_channel_sync(db, job) -> None:
    """Pull new messages for one connection and ingest them.

    Payload:
        - connection_id: channel connection to sync
    """
    connection_id = payload_uuid(job.payload, "connection_id")
    connection = channel_connection_service.get_connection(db, connection_id)
    if connection is None or not connection.is_active:
        logger.info("Channel sync skipped: connection %s inactive or missing", connection_id)
        return
    if not is_polling(connection.platform):
        logger.warning("Channel sync skipped: %s is push-only", connection.platform.value)
        return

    log_context = build_log_context(
        org_id=connection.organization_id,
        job_id=job.id,
        queue=job.queue,
        platform=connection.platform.value,
    )
    try:
        credentials = channel_connection_service.load_credentials(connection)
    except ValueError as exc:
        channel_connection_service.record_error(db, connection, f"Credential decryption failed: {exc}")
        raise

    adapter = get_adapter(connection.platform)
    async with httpx.AsyncClient(timeout=settings.CHANNEL_SEND_TIMEOUT_SECONDS) as client:
        messages, cursor = await _fetch(adapter, client, db, connection, credentials)

    ingest = get_ingest_service()
    routed = 0
    for message in messages:
        result = ingest.ingest(db, connection, message)
        routed += result.status == "routed"
    channel_connection_service.record_sync(db, connection, cursor)
    logger.info(
        "Channel sync complete: fetched=%d routed=%d",
        len(messages),
        routed,
        extra=log_context,
    )
