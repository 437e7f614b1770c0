"""Periodic job scheduling.

Every tick enqueues what is due; idempotency keys make repeated ticks (or
several workers ticking at once) harmless.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from supportdesk.db.enums import AnalyticsPeriod, ChannelPlatform, JobType
from supportdesk.db.models import ChannelConnection, Organization
from supportdesk.db.types import utcnow
from supportdesk.services import channel_connection_service
from supportdesk.services.ai_settings_service import get_ai_settings
from supportdesk.services.analytics_service import period_window
from supportdesk.services.channels import is_polling
from supportdesk.services.job_service import JobOrchestrator, get_orchestrator

logger = logging.getLogger(__name__)

# Telegram bots in webhook mode cannot also be polled
POLLING_DEFAULTS = {
    ChannelPlatform.GMAIL: True,
    ChannelPlatform.DISCORD: True,
    ChannelPlatform.TELEGRAM: False,
}


def recurring_issue_key(organization_id, now: datetime) -> str:
    year, week, _ = now.isocalendar()
    return f"recurring-issues:{organization_id}:{year}-W{week:02d}"


def analytics_key(period: AnalyticsPeriod, organization_id, period_start: datetime) -> str:
    return f"analytics:{period.value}:{organization_id}:{period_start.date().isoformat()}"


def channel_sync_key(connection_id, marker: str) -> str:
    return f"channel-sync:{connection_id}:{marker}"


def polling_enabled(connection: ChannelConnection) -> bool:
    if not is_polling(connection.platform):
        return False
    override = (connection.platform_metadata or {}).get("polling_enabled")
    if override is not None:
        return bool(override)
    return POLLING_DEFAULTS.get(connection.platform, False)


def schedule_periodic_jobs(
    db: Session,
    now: datetime | None = None,
    orchestrator: JobOrchestrator | None = None,
) -> dict[str, int]:
    """Enqueue due recurring-issue, analytics and channel-sync jobs."""
    now = now or utcnow()
    orchestrator = orchestrator or get_orchestrator()
    counts = {"recurring_issues": 0, "analytics": 0, "channel_sync": 0}

    for org in db.query(Organization).order_by(Organization.created_at.asc()).all():
        ai_settings = get_ai_settings(org)
        if ai_settings.enabled and ai_settings.recurring_issue_detection:
            job = orchestrator.enqueue(
                db,
                org.id,
                JobType.DETECT_RECURRING_ISSUES,
                {"auto_create_tasks": ai_settings.auto_create_tasks},
                idempotency_key=recurring_issue_key(org.id, now),
            )
            counts["recurring_issues"] += job is not None

        for period in AnalyticsPeriod:
            start, _ = period_window(period, now)
            job = orchestrator.enqueue(
                db,
                org.id,
                JobType.AGGREGATE_ANALYTICS,
                {"period": period.value, "period_start": start.isoformat()},
                idempotency_key=analytics_key(period, org.id, start),
            )
            counts["analytics"] += job is not None

    minute = now.strftime("%Y%m%d%H%M")
    for connection in channel_connection_service.list_active_connections(db):
        if not polling_enabled(connection):
            continue
        job = orchestrator.enqueue(
            db,
            connection.organization_id,
            JobType.CHANNEL_SYNC,
            {"connection_id": str(connection.id)},
            idempotency_key=channel_sync_key(connection.id, minute),
        )
        counts["channel_sync"] += job is not None

    if any(counts.values()):
        logger.info(
            "Periodic jobs scheduled: recurring=%d analytics=%d channel_sync=%d",
            counts["recurring_issues"],
            counts["analytics"],
            counts["channel_sync"],
        )
    return counts
