"""Ticket analytics aggregation into per-period snapshots."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from supportdesk.core.structured_logging import build_log_context
from supportdesk.db.enums import AnalyticsPeriod, TicketStatus
from supportdesk.db.models import AnalyticsSnapshot, Ticket
from supportdesk.db.types import utcnow

logger = logging.getLogger(__name__)


def period_window(period: AnalyticsPeriod | str, now: datetime | None = None) -> tuple[datetime, datetime]:
    """Most recent complete calendar period before ``now`` as [start, end)."""
    period = AnalyticsPeriod(period)
    now = now or utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == AnalyticsPeriod.DAILY:
        return today - timedelta(days=1), today
    if period == AnalyticsPeriod.WEEKLY:
        this_week = today - timedelta(days=today.weekday())
        return this_week - timedelta(days=7), this_week
    this_month = today.replace(day=1)
    last_month = (this_month - timedelta(days=1)).replace(day=1)
    return last_month, this_month


def period_end(period: AnalyticsPeriod | str, start: datetime) -> datetime:
    period = AnalyticsPeriod(period)
    if period == AnalyticsPeriod.DAILY:
        return start + timedelta(days=1)
    if period == AnalyticsPeriod.WEEKLY:
        return start + timedelta(days=7)
    return (start.replace(day=1) + timedelta(days=32)).replace(day=1)


def compute_metrics(tickets: list[Ticket]) -> dict:
    total = len(tickets)
    counts = {status: 0 for status in TicketStatus}
    resolution_hours = []
    ai_resolved = 0
    for ticket in tickets:
        counts[TicketStatus(ticket.status)] += 1
        if ticket.status == TicketStatus.CLOSED:
            if ticket.closed_at is not None:
                resolution_hours.append((ticket.closed_at - ticket.created_at).total_seconds() / 3600)
            # Closed without ever reaching a human
            if ticket.assignee_user_id is None:
                ai_resolved += 1

    return {
        "total_tickets": total,
        "open_tickets": counts[TicketStatus.OPEN],
        "in_progress_tickets": counts[TicketStatus.IN_PROGRESS],
        "closed_tickets": counts[TicketStatus.CLOSED],
        "avg_resolution_time_hours": round(sum(resolution_hours) / len(resolution_hours), 2)
        if resolution_hours
        else 0.0,
        "ai_resolved_tickets": ai_resolved,
        "automation_rate": round(ai_resolved / total * 100, 2) if total else 0.0,
    }


def aggregate(
    db: Session,
    organization_id: UUID,
    period: AnalyticsPeriod | str,
    period_start: datetime | None = None,
    now: datetime | None = None,
) -> AnalyticsSnapshot:
    """Compute and upsert the snapshot for one organization and period."""
    period = AnalyticsPeriod(period)
    start, end = period_window(period, now)
    if period_start is not None:
        # Explicit start (from the job payload) keeps retries on the same window
        start, end = period_start, period_end(period, period_start)

    tickets = (
        db.query(Ticket)
        .filter(
            Ticket.organization_id == organization_id,
            Ticket.created_at >= start,
            Ticket.created_at < end,
        )
        .all()
    )
    metrics = compute_metrics(tickets)

    snapshot = (
        db.query(AnalyticsSnapshot)
        .filter(
            AnalyticsSnapshot.organization_id == organization_id,
            AnalyticsSnapshot.period == period,
            AnalyticsSnapshot.period_start == start,
        )
        .first()
    )
    if snapshot is None:
        snapshot = AnalyticsSnapshot(
            organization_id=organization_id,
            period=period,
            period_start=start,
        )
    snapshot.period_end = end
    snapshot.metrics = metrics
    snapshot.computed_at = utcnow()
    db.add(snapshot)
    db.commit()
    db.refresh(snapshot)

    logger.info(
        "%s analytics aggregated: %d tickets",
        period.value,
        metrics["total_tickets"],
        extra=build_log_context(org_id=organization_id),
    )
    return snapshot
