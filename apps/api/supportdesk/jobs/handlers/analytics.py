"""Analytics aggregation job handler."""

from __future__ import annotations

from datetime import datetime

from supportdesk.jobs.utils import payload_uuid
from supportdesk.services import analytics_service


async def process_aggregate_analytics(db, job) -> None:
    """Upsert one snapshot.

    Payload:
        - period: daily | weekly | monthly
        - period_start: ISO timestamp of the window start (optional)
    """
    payload = job.payload or {}
    org_id = payload_uuid(payload, "organization_id")
    period = payload.get("period")
    if not period:
        raise ValueError("Missing period in job payload")
    period_start = payload.get("period_start")
    analytics_service.aggregate(
        db,
        org_id,
        period,
        period_start=datetime.fromisoformat(period_start) if period_start else None,
    )
