"""Inbound ingestion: identity check, threading, triage enqueue.

This is the whole synchronous path of a webhook or poll. Anything slow
(model calls, outbound sends) happens in queued jobs.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from supportdesk.core.structured_logging import build_log_context
from supportdesk.db.enums import JobType
from supportdesk.db.models import ChannelConnection, Organization
from supportdesk.schemas.inbound import CanonicalInboundMessage, IngestResult
from supportdesk.services import identity_service
from supportdesk.services.ai_settings_service import get_ai_settings
from supportdesk.services.job_service import JobOrchestrator, get_orchestrator
from supportdesk.services.threading_service import ConversationThreader

logger = logging.getLogger(__name__)


def triage_idempotency_key(ticket_id, message_id) -> str:
    return f"triage:{ticket_id}:{message_id}"


class IngestService:
    def __init__(
        self,
        orchestrator: JobOrchestrator | None = None,
        threader: ConversationThreader | None = None,
    ):
        self.orchestrator = orchestrator or get_orchestrator()
        self.threader = threader or ConversationThreader()

    def ingest(
        self,
        db: Session,
        connection: ChannelConnection,
        message: CanonicalInboundMessage,
    ) -> IngestResult:
        organization_id = connection.organization_id
        log_context = build_log_context(org_id=organization_id, platform=message.platform.value)

        if identity_service.is_internal(
            db,
            organization_id,
            message.sender_email,
            identity_hints=message.identity_hints,
            platform=message.platform,
        ):
            logger.info("Inbound message from team member ignored", extra=log_context)
            return IngestResult(status="internal_sender")

        routed = self.threader.route(db, connection, organization_id, message)
        if routed.duplicate:
            return IngestResult(status="duplicate", ticket_id=routed.ticket_id)

        triage_enqueued = False
        org = db.get(Organization, organization_id)
        if org is not None and get_ai_settings(org).enabled:
            job = self.orchestrator.enqueue(
                db,
                organization_id,
                JobType.TRIAGE_TICKET,
                {"ticket_id": str(routed.ticket_id), "message_id": str(routed.message_id)},
                idempotency_key=triage_idempotency_key(routed.ticket_id, routed.message_id),
            )
            triage_enqueued = job is not None

        logger.info(
            "Inbound message routed (new_ticket=%s, triage=%s)",
            routed.is_new_ticket,
            triage_enqueued,
            extra=build_log_context(
                org_id=organization_id,
                platform=message.platform.value,
                ticket_id=routed.ticket_id,
            ),
        )
        return IngestResult(
            status="routed",
            ticket_id=routed.ticket_id,
            is_new_ticket=routed.is_new_ticket,
            triage_enqueued=triage_enqueued,
        )


_ingest_service: IngestService | None = None


def get_ingest_service() -> IngestService:
    global _ingest_service
    if _ingest_service is None:
        _ingest_service = IngestService()
    return _ingest_service
