"""Public web widget endpoints.

Visitors are anonymous; a ticket's timeline is only readable with the
session id that opened it.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from supportdesk.core.deps import get_db, get_ingest_service
from supportdesk.core.rate_limit import WIDGET_LIMIT, limiter
from supportdesk.db.enums import ChannelPlatform
from supportdesk.db.models import Organization
from supportdesk.schemas.widget import WidgetMessageAccepted, WidgetMessageCreate, WidgetMessageRead
from supportdesk.services import channel_connection_service
from supportdesk.services.channels import get_adapter
from supportdesk.services.ingest_service import IngestService
from supportdesk.services.ticket_repository import ticket_repository

router = APIRouter(prefix="/widget", tags=["widget"])
logger = logging.getLogger(__name__)


@router.post("/{organization_id}/messages", response_model=WidgetMessageAccepted)
@limiter.limit(WIDGET_LIMIT)
def post_widget_message(
    request: Request,
    organization_id: UUID,
    data: WidgetMessageCreate,
    db: Session = Depends(get_db),
    ingest_service: IngestService = Depends(get_ingest_service),
):
    """Visitor message: opens a ticket or joins the session's open one."""
    if db.get(Organization, organization_id) is None:
        raise HTTPException(status_code=404, detail="Organization not found")

    connection = channel_connection_service.get_or_create_widget_connection(db, organization_id)
    try:
        message = get_adapter(ChannelPlatform.WIDGET).normalize(data.model_dump())
    except ValidationError:
        raise HTTPException(status_code=422, detail="Invalid message")
    if message is None:
        raise HTTPException(status_code=422, detail="Message content is empty")

    result = ingest_service.ingest(db, connection, message)
    return WidgetMessageAccepted(
        ticket_id=result.ticket_id,
        is_new_ticket=result.is_new_ticket,
        status=result.status,
    )


@router.get(
    "/{organization_id}/tickets/{ticket_id}/messages",
    response_model=list[WidgetMessageRead],
)
@limiter.limit(WIDGET_LIMIT)
def list_widget_messages(
    request: Request,
    organization_id: UUID,
    ticket_id: UUID,
    session_id: str = Query(..., min_length=1, max_length=128),
    db: Session = Depends(get_db),
):
    """Customer-visible timeline; internal notes are never returned."""
    ticket = ticket_repository.get(db, ticket_id)
    if (
        ticket is None
        or ticket.organization_id != organization_id
        or ticket.thread_key != session_id
        or ticket.source_connection is None
        or ticket.source_connection.platform != ChannelPlatform.WIDGET
    ):
        raise HTTPException(status_code=404, detail="Ticket not found")

    return [
        WidgetMessageRead(
            id=message.id,
            sender_type=message.sender_type.value,
            body=message.body,
            created_at=message.created_at,
        )
        for message in ticket_repository.list_messages(db, ticket.id, include_internal=False)
    ]
