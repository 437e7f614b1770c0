"""Conversation threading: fold inbound messages into tickets.

The find-or-create sequence is the one real race in ingestion: two messages
for the same thread can both see "no open ticket". Two guards apply:

1. a striped in-process lock per thread key around find-or-create, and
2. the ``uq_tickets_open_thread`` partial unique index, for races between
   processes. A losing insert rolls back and appends to the winner's ticket.
"""

from __future__ import annotations

import logging
import threading
import zlib
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from supportdesk.core.structured_logging import build_log_context
from supportdesk.db.enums import SenderType
from supportdesk.db.models import ChannelConnection, Ticket
from supportdesk.schemas.inbound import CanonicalInboundMessage, RouteResult
from supportdesk.services.ticket_repository import TicketRepository, ticket_repository

logger = logging.getLogger(__name__)

LOCK_STRIPES = 256


class ThreadKeyLocks:
    """Fixed pool of locks addressed by thread key hash (bounded memory)."""

    def __init__(self, stripes: int = LOCK_STRIPES):
        self._locks = [threading.Lock() for _ in range(stripes)]

    def for_key(self, key: str) -> threading.Lock:
        return self._locks[zlib.crc32(key.encode()) % len(self._locks)]


class ConversationThreader:
    def __init__(
        self,
        repository: TicketRepository | None = None,
        locks: ThreadKeyLocks | None = None,
    ):
        self.repository = repository or ticket_repository
        self.locks = locks or ThreadKeyLocks()

    def route(
        self,
        db: Session,
        connection: ChannelConnection | None,
        organization_id: UUID,
        message: CanonicalInboundMessage,
    ) -> RouteResult:
        """Append message to the open ticket for its thread, or open one."""
        connection_id = connection.id if connection is not None else None
        lock_key = "|".join(
            [str(organization_id), str(connection_id), message.sender_email, message.external_thread_key]
        )
        with self.locks.for_key(lock_key):
            duplicate = self.repository.find_message_by_external_id(
                db,
                organization_id=organization_id,
                source_connection_id=connection_id,
                external_message_id=message.external_message_id,
            )
            if duplicate is not None:
                logger.info(
                    "Duplicate inbound message skipped",
                    extra=build_log_context(
                        org_id=organization_id,
                        platform=message.platform.value,
                        ticket_id=duplicate.ticket_id,
                    ),
                )
                return RouteResult(
                    ticket_id=duplicate.ticket_id,
                    is_new_ticket=False,
                    message_id=duplicate.id,
                    duplicate=True,
                )

            ticket = self._find_open(db, organization_id, connection_id, message)
            if ticket is not None:
                return self._append(db, ticket, message, is_new=False)

            try:
                ticket = self.repository.create_ticket(
                    db,
                    organization_id=organization_id,
                    source_connection_id=connection_id,
                    customer_email=message.sender_email,
                    customer_name=message.sender_display_name,
                    subject=message.ticket_subject,
                    thread_key=message.external_thread_key,
                    metadata={
                        "source": message.platform.value,
                        **message.thread_metadata,
                        **message.reply_target,
                    },
                )
                return self._append(db, ticket, message, is_new=True)
            except IntegrityError:
                db.rollback()
                ticket = self._find_open(db, organization_id, connection_id, message)
                if ticket is None:
                    raise
                logger.info(
                    "Concurrent ticket create lost, appending to existing ticket",
                    extra=build_log_context(org_id=organization_id, ticket_id=ticket.id),
                )
                return self._append(db, ticket, message, is_new=False)

    def _find_open(
        self,
        db: Session,
        organization_id: UUID,
        connection_id: UUID | None,
        message: CanonicalInboundMessage,
    ) -> Ticket | None:
        return self.repository.find_open_for_thread(
            db,
            organization_id=organization_id,
            source_connection_id=connection_id,
            customer_email=message.sender_email,
            thread_key=message.external_thread_key,
        )

    def _append(
        self,
        db: Session,
        ticket: Ticket,
        message: CanonicalInboundMessage,
        *,
        is_new: bool,
    ) -> RouteResult:
        created = self.repository.append_message(
            db,
            ticket,
            sender_type=SenderType.CUSTOMER,
            body=message.body,
            external_message_id=message.external_message_id,
            metadata={**message.raw_metadata, **message.reply_target},
        )
        if not is_new:
            # Next outbound reply targets the newest inbound message
            self.repository.merge_metadata(ticket, message.reply_target)
            if not ticket.customer_name and message.sender_display_name:
                ticket.customer_name = message.sender_display_name
            db.add(ticket)
        db.commit()
        return RouteResult(ticket_id=ticket.id, is_new_ticket=is_new, message_id=created.id)
