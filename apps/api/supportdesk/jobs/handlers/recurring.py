"""Recurring-issue detection job handler."""

from __future__ import annotations

import logging

from supportdesk.core.structured_logging import build_log_context
from supportdesk.jobs.utils import payload_uuid
from supportdesk.services.recurring_issue_service import get_clusterer

logger = logging.getLogger(__name__)


async def process_detect_recurring_issues(db, job) -> None:
    payload = job.payload or {}
    org_id = payload_uuid(payload, "organization_id")
    clusterer = get_clusterer()
    issues = await clusterer.detect(db, org_id)
    task_ids: list[str] = []
    if issues and payload.get("auto_create_tasks"):
        task_ids = await clusterer.create_tracker_tasks(db, org_id, issues)
    logger.info(
        "Recurring issues detected: %d (tracker tasks created: %d)",
        len(issues),
        len(task_ids),
        extra=build_log_context(org_id=org_id, job_id=job.id, queue=job.queue),
    )
