"""Recurring-issue detection over an organization's recent tickets."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

import httpx
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from supportdesk.core.config import settings
from supportdesk.core.structured_logging import build_log_context
from supportdesk.db.enums import AIProviderKind, TicketPriority
from supportdesk.db.models import Organization, Ticket, TrackerConnection
from supportdesk.db.types import utcnow
from supportdesk.services import project_tracker_service
from supportdesk.services.ai_provider import AIProvider, ChatMessage, CompletionConfig, get_provider
from supportdesk.services.ai_response_validation import parse_model_output
from supportdesk.services.ai_settings_service import get_ai_settings
from supportdesk.services.pii_redactor import pii_redactor
from supportdesk.services.ticket_repository import ticket_repository

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30
MIN_TICKETS = 5
MIN_OCCURRENCES = 3
DESCRIPTION_CHARS = 200

CLUSTER_PROMPT = """You are an analyst identifying patterns in customer support data.

Analyze these customer support tickets and identify recurring issues.
Group tickets that describe the same or very similar problems.

Tickets:
{digest}

Only include issues that appear in 3 or more tickets.

Respond ONLY with valid JSON in this exact format (no markdown, no code blocks):
{{
  "recurringIssues": [
    {{
      "issue": "Brief description of the recurring issue",
      "ticketIndices": [list of ticket indices],
      "suggestedSolution": "Suggested fix or action"
    }}
  ]
}}"""


class _ClusterItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    issue: str
    ticket_indices: list[int] = Field(alias="ticketIndices")
    suggested_solution: str | None = Field(default=None, alias="suggestedSolution")


class _ClusterOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    recurring_issues: list[_ClusterItem] = Field(default_factory=list, alias="recurringIssues")


@dataclass
class RecurringIssue:
    description: str
    occurrences: int
    affected_customers: int
    severity: TicketPriority
    ticket_ids: list[UUID] = field(default_factory=list)
    suggested_solution: str | None = None


def severity_for(occurrences: int) -> TicketPriority:
    if occurrences >= 10:
        return TicketPriority.URGENT
    if occurrences >= 5:
        return TicketPriority.HIGH
    if occurrences >= 3:
        return TicketPriority.MEDIUM
    return TicketPriority.LOW


def tracker_priority(severity: TicketPriority) -> str:
    if severity == TicketPriority.URGENT:
        return "urgent"
    if severity == TicketPriority.HIGH:
        return "high"
    return "normal"


def build_task(issue: RecurringIssue) -> dict:
    description = "\n".join(
        [
            "Recurring issue detected",
            "",
            f"Issue: {issue.description}",
            "",
            "Impact:",
            f"- Occurrences: {issue.occurrences}",
            f"- Affected customers: {issue.affected_customers}",
            f"- Related tickets: {', '.join(str(t) for t in issue.ticket_ids)}",
            "",
            "Suggested solution:",
            issue.suggested_solution or "To be determined",
        ]
    )
    return {
        "name": f"[Auto-PM] {issue.description}",
        "description": description,
        "priority": tracker_priority(issue.severity),
    }


class RecurringIssueClusterer:
    def __init__(self, provider_factory: Callable[[AIProviderKind], AIProvider] = get_provider):
        self.provider_factory = provider_factory

    async def detect(
        self,
        db: Session,
        organization_id: UUID,
        window_days: int = DEFAULT_WINDOW_DAYS,
        now: datetime | None = None,
    ) -> list[RecurringIssue]:
        since = (now or utcnow()) - timedelta(days=window_days)
        tickets = (
            db.query(Ticket)
            .filter(Ticket.organization_id == organization_id, Ticket.created_at >= since)
            .order_by(Ticket.created_at.asc())
            .all()
        )
        if len(tickets) < MIN_TICKETS:
            return []

        org = db.get(Organization, organization_id)
        compliance = get_ai_settings(org).compliance if org is not None else None

        lines = []
        for index, ticket in enumerate(tickets):
            first = ticket_repository.first_customer_message(db, ticket.id)
            description = (first.body if first is not None else ticket.subject)[:DESCRIPTION_CHARS]
            lines.append(f"{index}. {ticket.subject}: {description}")
        digest = "\n".join(lines)
        if compliance is None or compliance.pii_redaction_enabled:
            digest = pii_redactor.redact(digest).text

        provider = self.provider_factory(compliance.ai_provider if compliance else AIProviderKind.HOSTED)
        completion = await provider.complete(
            [ChatMessage(role="user", content=CLUSTER_PROMPT.format(digest=digest))],
            CompletionConfig(
                model=compliance.model if compliance else None,
                temperature=0.2,
                max_tokens=2048,
                json_output=True,
            ),
        )
        output = parse_model_output(_ClusterOutput, completion.text)
        if output is None:
            logger.warning(
                "Recurring-issue model output unusable, no issues reported",
                extra=build_log_context(org_id=organization_id),
            )
            return []

        issues = []
        for item in output.recurring_issues:
            indices = sorted({i for i in item.ticket_indices if 0 <= i < len(tickets)})
            if len(indices) < MIN_OCCURRENCES:
                continue
            related = [tickets[i] for i in indices]
            issues.append(
                RecurringIssue(
                    description=item.issue.strip(),
                    occurrences=len(related),
                    affected_customers=len({t.customer_email.lower() for t in related}),
                    severity=severity_for(len(related)),
                    ticket_ids=[t.id for t in related],
                    suggested_solution=item.suggested_solution,
                )
            )
        return issues

    async def create_tracker_tasks(
        self,
        db: Session,
        organization_id: UUID,
        issues: list[RecurringIssue],
        client: httpx.AsyncClient | None = None,
    ) -> list[str]:
        """Open one task per issue in the org's first active tracker."""
        connection = (
            db.query(TrackerConnection)
            .filter(
                TrackerConnection.organization_id == organization_id,
                TrackerConnection.is_active.is_(True),
            )
            .order_by(TrackerConnection.created_at.asc())
            .first()
        )
        if connection is None or not issues:
            return []

        owns_client = client is None
        client = client or httpx.AsyncClient(timeout=settings.CHANNEL_SEND_TIMEOUT_SECONDS)
        created: list[str] = []
        seen: set[str] = set()
        try:
            for issue in issues:
                key = issue.description.strip().lower()
                if key in seen:
                    continue
                seen.add(key)
                try:
                    task_id = await project_tracker_service.create_task(client, connection, build_task(issue))
                except Exception as exc:
                    logger.error(
                        "Tracker task creation failed (%s)",
                        type(exc).__name__,
                        extra=build_log_context(org_id=organization_id),
                    )
                    continue
                if task_id:
                    created.append(str(task_id))
        finally:
            if owns_client:
                await client.aclose()
        return created


_clusterer: RecurringIssueClusterer | None = None


def get_clusterer() -> RecurringIssueClusterer:
    global _clusterer
    if _clusterer is None:
        _clusterer = RecurringIssueClusterer()
    return _clusterer
