"""Channel relay: deliver a ticket reply back to the customer's platform.

The reply is stored and committed before any delivery attempt, so a
platform outage never loses it; ``deliver`` reports the outcome as a bool
and never raises.
"""

from __future__ import annotations

import logging
from typing import Callable
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from supportdesk.core.config import settings
from supportdesk.core.structured_logging import build_log_context
from supportdesk.db.enums import ChannelPlatform, SenderType
from supportdesk.db.models import Organization, OrganizationMember, Ticket
from supportdesk.db.types import utcnow
from supportdesk.services import channel_connection_service
from supportdesk.services.ai_settings_service import get_ai_settings
from supportdesk.services.channels import ReplyTarget, get_adapter
from supportdesk.services.http_service import ExternalAPIError
from supportdesk.services.ticket_repository import TicketRepository, ticket_repository

logger = logging.getLogger(__name__)


def _default_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.CHANNEL_SEND_TIMEOUT_SECONDS)


def brand_reply(text: str, org_name: str | None, agent_name: str | None) -> str:
    if not org_name:
        return text
    label = f"{org_name} (via {agent_name})" if agent_name else org_name
    return f"{label}:\n{text}"


class ChannelRelay:
    def __init__(
        self,
        repository: TicketRepository | None = None,
        client_factory: Callable[[], httpx.AsyncClient] = _default_client,
    ):
        self.repository = repository or ticket_repository
        self.client_factory = client_factory

    async def deliver(
        self,
        db: Session,
        ticket_id: UUID,
        text: str,
        sender_user_id: UUID | None = None,
        is_internal: bool = False,
        quick_replies: list[str] | None = None,
    ) -> bool:
        """Persist the reply, then send it to the ticket's source platform.

        Returns True only when the platform accepted the message (widget
        replies count as delivered once stored). Internal notes are stored
        and never relayed.
        """
        ticket = self.repository.get(db, ticket_id)
        if ticket is None:
            logger.warning("Relay skipped: ticket %s not found", ticket_id)
            return False

        message = self.repository.append_message(
            db,
            ticket,
            sender_type=SenderType.AGENT,
            body=text,
            is_internal=is_internal,
            author_user_id=sender_user_id,
            metadata={"automated": sender_user_id is None},
        )
        db.commit()
        if is_internal:
            return False

        log_context = build_log_context(org_id=ticket.organization_id, ticket_id=ticket.id)
        connection = ticket.source_connection
        if connection is None or not connection.is_active:
            logger.info("Relay skipped: ticket has no active source connection", extra=log_context)
            return False
        if connection.platform == ChannelPlatform.WIDGET:
            return True

        try:
            credentials = channel_connection_service.load_credentials(connection)
        except ValueError as exc:
            channel_connection_service.record_error(db, connection, f"Credential decryption failed: {exc}")
            return False

        adapter = get_adapter(connection.platform)
        target = self._reply_target(db, ticket)
        outbound_text = self._branded_text(db, ticket, text, sender_user_id)
        log_context["platform"] = connection.platform.value

        try:
            async with self.client_factory() as client:
                credentials = await self._refresh(db, connection, adapter, client, credentials)
                receipt = await adapter.send_reply(client, credentials, target, outbound_text, quick_replies)
        except ExternalAPIError as exc:
            if exc.permanent:
                channel_connection_service.record_error(db, connection, str(exc))
            logger.error("Relay delivery failed: %s", exc, extra=log_context)
            return False
        except Exception as exc:
            logger.error("Relay delivery failed (%s)", type(exc).__name__, extra=log_context)
            return False

        message.message_metadata = {
            **(message.message_metadata or {}),
            "deliveredAt": utcnow().isoformat(),
            "deliveredMessageId": receipt.external_message_id,
        }
        if receipt.metadata:
            self.repository.merge_metadata(ticket, receipt.metadata)
        db.add_all([message, ticket])
        db.commit()
        logger.info("Reply relayed to %s", connection.platform.value, extra=log_context)
        return True

    def _reply_target(self, db: Session, ticket: Ticket) -> ReplyTarget:
        # Newest inbound message wins over the keys seeded at ticket creation
        keys = dict(ticket.ticket_metadata or {})
        latest = self.repository.latest_customer_message(db, ticket.id)
        if latest is not None:
            keys.update({k: v for k, v in (latest.message_metadata or {}).items() if v is not None})
        return ReplyTarget(
            thread_key=ticket.thread_key,
            customer_email=ticket.customer_email,
            customer_name=ticket.customer_name,
            subject=ticket.subject,
            keys=keys,
        )

    def _branded_text(self, db: Session, ticket: Ticket, text: str, sender_user_id: UUID | None) -> str:
        org = db.get(Organization, ticket.organization_id)
        if org is None:
            return text
        if sender_user_id is None:
            if not get_ai_settings(org).brand_automated_replies:
                return text
            return brand_reply(text, org.name, None)
        member = (
            db.query(OrganizationMember)
            .filter(
                OrganizationMember.organization_id == org.id,
                OrganizationMember.user_id == sender_user_id,
            )
            .first()
        )
        agent_name = (member.display_name or member.email.split("@")[0]) if member else None
        return brand_reply(text, org.name, agent_name)

    async def _refresh(self, db, connection, adapter, client, credentials: dict) -> dict:
        """Opportunistic token refresh; any failure keeps the existing token."""
        try:
            refreshed = await adapter.refresh_credentials(client, credentials)
        except Exception as exc:
            logger.warning(
                "Credential refresh failed, using existing token (%s)",
                type(exc).__name__,
                extra=build_log_context(org_id=connection.organization_id, platform=connection.platform.value),
            )
            return credentials
        if refreshed:
            channel_connection_service.store_credentials(db, connection, refreshed)
            return refreshed
        return credentials


_relay: ChannelRelay | None = None


def get_relay() -> ChannelRelay:
    global _relay
    if _relay is None:
        _relay = ChannelRelay()
    return _relay
