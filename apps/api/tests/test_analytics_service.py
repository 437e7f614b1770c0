"""Analytics windows, metrics and snapshot upserts."""

import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from supportdesk.db.enums import AnalyticsPeriod, TicketStatus
from supportdesk.db.models import AnalyticsSnapshot, Ticket
from supportdesk.jobs.handlers.analytics import process_aggregate_analytics
from supportdesk.services import analytics_service

NOW = datetime(2024, 3, 13, 15, 30, tzinfo=timezone.utc)  # a Wednesday


def test_daily_window_is_yesterday():
    start, end = analytics_service.period_window(AnalyticsPeriod.DAILY, NOW)
    assert start == datetime(2024, 3, 12, tzinfo=timezone.utc)
    assert end == datetime(2024, 3, 13, tzinfo=timezone.utc)


def test_weekly_window_is_previous_monday_to_monday():
    start, end = analytics_service.period_window("weekly", NOW)
    assert start == datetime(2024, 3, 4, tzinfo=timezone.utc)
    assert end == datetime(2024, 3, 11, tzinfo=timezone.utc)


def test_monthly_window_is_previous_calendar_month():
    start, end = analytics_service.period_window(AnalyticsPeriod.MONTHLY, NOW)
    assert start == datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert end == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert analytics_service.period_end(AnalyticsPeriod.MONTHLY, start) == end


def _t(status, created_at=NOW, closed_at=None, assignee=None):
    return SimpleNamespace(status=status, created_at=created_at, closed_at=closed_at, assignee_user_id=assignee)


def test_compute_metrics():
    tickets = [
        _t(TicketStatus.OPEN),
        _t(TicketStatus.IN_PROGRESS, assignee=uuid.uuid4()),
        _t(TicketStatus.CLOSED, closed_at=NOW + timedelta(hours=2)),
        _t(TicketStatus.CLOSED, closed_at=NOW + timedelta(hours=6), assignee=uuid.uuid4()),
    ]

    metrics = analytics_service.compute_metrics(tickets)

    assert metrics == {
        "total_tickets": 4,
        "open_tickets": 1,
        "in_progress_tickets": 1,
        "closed_tickets": 2,
        "avg_resolution_time_hours": 4.0,
        "ai_resolved_tickets": 1,
        "automation_rate": 25.0,
    }


def test_compute_metrics_empty():
    metrics = analytics_service.compute_metrics([])
    assert metrics["total_tickets"] == 0
    assert metrics["automation_rate"] == 0.0
    assert metrics["avg_resolution_time_hours"] == 0.0


def _add_ticket(db, org, created_at, status=TicketStatus.OPEN):
    ticket = Ticket(
        organization_id=org.id,
        customer_email="c@example.com",
        subject="Help",
        status=status,
        created_at=created_at,
        updated_at=created_at,
        closed_at=created_at + timedelta(hours=1) if status == TicketStatus.CLOSED else None,
    )
    db.add(ticket)
    db.commit()
    return ticket


def test_aggregate_upserts_one_snapshot_per_window(db, test_org):
    _add_ticket(db, test_org, datetime(2024, 3, 12, 9, tzinfo=timezone.utc))
    _add_ticket(db, test_org, datetime(2024, 3, 12, 18, tzinfo=timezone.utc), TicketStatus.CLOSED)
    _add_ticket(db, test_org, datetime(2024, 3, 13, 9, tzinfo=timezone.utc))  # today, outside the window

    first = analytics_service.aggregate(db, test_org.id, AnalyticsPeriod.DAILY, now=NOW)
    _add_ticket(db, test_org, datetime(2024, 3, 12, 20, tzinfo=timezone.utc))
    second = analytics_service.aggregate(db, test_org.id, AnalyticsPeriod.DAILY, now=NOW)

    assert first.id == second.id
    assert second.metrics["total_tickets"] == 3
    assert second.metrics["closed_tickets"] == 1
    assert second.metrics["automation_rate"] == pytest.approx(33.33)
    assert db.query(AnalyticsSnapshot).count() == 1


@pytest.mark.asyncio
async def test_aggregation_job_uses_payload_window(db, test_org):
    _add_ticket(db, test_org, datetime(2024, 2, 10, tzinfo=timezone.utc))
    job = SimpleNamespace(
        id="job-1",
        queue="analytics-aggregation",
        payload={
            "organization_id": str(test_org.id),
            "period": "monthly",
            "period_start": datetime(2024, 2, 1, tzinfo=timezone.utc).isoformat(),
        },
    )

    await process_aggregate_analytics(db, job)

    snapshot = db.query(AnalyticsSnapshot).one()
    assert snapshot.period == AnalyticsPeriod.MONTHLY
    assert snapshot.period_start == datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert snapshot.period_end == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert snapshot.metrics["total_tickets"] == 1


@pytest.mark.asyncio
async def test_aggregation_job_requires_period(db, test_org):
    job = SimpleNamespace(id="job-2", queue="analytics-aggregation", payload={"organization_id": str(test_org.id)})

    with pytest.raises(ValueError, match="period"):
        await process_aggregate_analytics(db, job)
