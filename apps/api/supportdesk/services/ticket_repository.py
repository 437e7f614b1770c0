"""Ticket store access used by the threader, triage and relay."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from supportdesk.db.enums import OPEN_TICKET_STATUSES, SenderType, TicketStatus
from supportdesk.db.models import Ticket, TicketMessage
from supportdesk.db.types import utcnow


class TicketRepository:
    """SQLAlchemy-backed ticket repository.

    Writes only flush; committing is left to the caller so find-or-create can
    run as one unit and roll back on a uniqueness conflict.
    """

    def get(self, db: Session, ticket_id: UUID) -> Ticket | None:
        return db.get(Ticket, ticket_id)

    def find_open_for_thread(
        self,
        db: Session,
        *,
        organization_id: UUID,
        source_connection_id: UUID | None,
        customer_email: str,
        thread_key: str,
    ) -> Ticket | None:
        """Newest open/in_progress ticket for one conversation thread."""
        query = db.query(Ticket).filter(
            Ticket.organization_id == organization_id,
            Ticket.customer_email == customer_email,
            Ticket.thread_key == thread_key,
            Ticket.status.in_(OPEN_TICKET_STATUSES),
        )
        if source_connection_id is None:
            query = query.filter(Ticket.source_connection_id.is_(None))
        else:
            query = query.filter(Ticket.source_connection_id == source_connection_id)
        return query.order_by(Ticket.created_at.desc()).first()

    def find_message_by_external_id(
        self,
        db: Session,
        *,
        organization_id: UUID,
        source_connection_id: UUID | None,
        external_message_id: str,
    ) -> TicketMessage | None:
        return (
            db.query(TicketMessage)
            .join(Ticket, Ticket.id == TicketMessage.ticket_id)
            .filter(
                Ticket.organization_id == organization_id,
                Ticket.source_connection_id == source_connection_id,
                TicketMessage.external_message_id == external_message_id,
            )
            .first()
        )

    def create_ticket(
        self,
        db: Session,
        *,
        organization_id: UUID,
        source_connection_id: UUID | None,
        customer_email: str,
        customer_name: str | None,
        subject: str,
        thread_key: str | None,
        metadata: dict,
    ) -> Ticket:
        now = utcnow()
        ticket = Ticket(
            organization_id=organization_id,
            source_connection_id=source_connection_id,
            customer_email=customer_email,
            customer_name=customer_name,
            subject=subject,
            thread_key=thread_key,
            status=TicketStatus.OPEN,
            ticket_metadata=metadata,
            created_at=now,
            updated_at=now,
        )
        db.add(ticket)
        db.flush()
        return ticket

    def append_message(
        self,
        db: Session,
        ticket: Ticket,
        *,
        sender_type: SenderType,
        body: str,
        is_internal: bool = False,
        author_user_id: UUID | None = None,
        external_message_id: str | None = None,
        metadata: dict | None = None,
    ) -> TicketMessage:
        now = utcnow()
        message = TicketMessage(
            ticket_id=ticket.id,
            sender_type=sender_type,
            body=body,
            is_internal=is_internal,
            author_user_id=author_user_id,
            external_message_id=external_message_id,
            message_metadata=metadata or {},
            created_at=now,
        )
        db.add(message)
        ticket.updated_at = now
        db.add(ticket)
        db.flush()
        return message

    def merge_metadata(self, ticket: Ticket, values: dict) -> None:
        # JSON columns only notice reassignment, not in-place mutation
        ticket.ticket_metadata = {**(ticket.ticket_metadata or {}), **values}

    def list_messages(self, db: Session, ticket_id: UUID, *, include_internal: bool = True) -> list[TicketMessage]:
        query = db.query(TicketMessage).filter(TicketMessage.ticket_id == ticket_id)
        if not include_internal:
            query = query.filter(TicketMessage.is_internal.is_(False))
        return query.order_by(TicketMessage.created_at.asc()).all()

    def latest_customer_message(self, db: Session, ticket_id: UUID) -> TicketMessage | None:
        return (
            db.query(TicketMessage)
            .filter(
                TicketMessage.ticket_id == ticket_id,
                TicketMessage.sender_type == SenderType.CUSTOMER,
            )
            .order_by(TicketMessage.created_at.desc())
            .first()
        )

    def first_customer_message(self, db: Session, ticket_id: UUID) -> TicketMessage | None:
        return (
            db.query(TicketMessage)
            .filter(
                TicketMessage.ticket_id == ticket_id,
                TicketMessage.sender_type == SenderType.CUSTOMER,
            )
            .order_by(TicketMessage.created_at.asc())
            .first()
        )

    def assign(self, db: Session, ticket: Ticket, assignee_user_id: UUID) -> Ticket:
        now = utcnow()
        ticket.assignee_user_id = assignee_user_id
        ticket.assigned_at = now
        ticket.status = TicketStatus.IN_PROGRESS
        ticket.updated_at = now
        db.add(ticket)
        db.flush()
        return ticket

    def close(self, db: Session, ticket: Ticket) -> Ticket:
        now = utcnow()
        ticket.status = TicketStatus.CLOSED
        ticket.closed_at = now
        ticket.updated_at = now
        db.add(ticket)
        db.flush()
        return ticket


ticket_repository = TicketRepository()
