"""Human assignee selection for tickets the AI hands off.

Strategies are pure functions over ``CandidateStats`` so they can be tested
without a database; ``load_candidates`` builds the stats for one org.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from supportdesk.db.enums import OPEN_TICKET_STATUSES, AssignmentStrategy
from supportdesk.db.models import OrganizationMember, Ticket


@dataclass(frozen=True)
class CandidateStats:
    user_id: UUID
    joined_at: datetime
    last_assigned_at: datetime | None = None
    open_tickets: int = 0


def _rotation_key(candidate: CandidateStats) -> tuple:
    # Never-assigned members first, then whoever waited longest, then join order
    if candidate.last_assigned_at is None:
        return (0, candidate.joined_at, candidate.joined_at)
    return (1, candidate.last_assigned_at, candidate.joined_at)


def pick_round_robin(candidates: list[CandidateStats]) -> UUID | None:
    if not candidates:
        return None
    return min(candidates, key=_rotation_key).user_id


def pick_least_busy(candidates: list[CandidateStats]) -> UUID | None:
    if not candidates:
        return None
    return min(candidates, key=lambda c: (c.open_tickets, _rotation_key(c))).user_id


def select_assignee(
    strategy: AssignmentStrategy | str, candidates: list[CandidateStats]
) -> UUID | None:
    if AssignmentStrategy(strategy) == AssignmentStrategy.LEAST_BUSY:
        return pick_least_busy(candidates)
    return pick_round_robin(candidates)


def load_candidates(db: Session, organization_id: UUID) -> list[CandidateStats]:
    """Active members with their last assignment time and open ticket load."""
    members = (
        db.query(OrganizationMember)
        .filter(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.is_active.is_(True),
        )
        .order_by(OrganizationMember.created_at.asc())
        .all()
    )
    if not members:
        return []

    last_assigned = dict(
        db.query(Ticket.assignee_user_id, func.max(Ticket.assigned_at))
        .filter(
            Ticket.organization_id == organization_id,
            Ticket.assignee_user_id.isnot(None),
        )
        .group_by(Ticket.assignee_user_id)
        .all()
    )
    open_counts = dict(
        db.query(Ticket.assignee_user_id, func.count(Ticket.id))
        .filter(
            Ticket.organization_id == organization_id,
            Ticket.assignee_user_id.isnot(None),
            Ticket.status.in_(OPEN_TICKET_STATUSES),
        )
        .group_by(Ticket.assignee_user_id)
        .all()
    )
    return [
        CandidateStats(
            user_id=member.user_id,
            joined_at=member.created_at,
            last_assigned_at=last_assigned.get(member.user_id),
            open_tickets=open_counts.get(member.user_id, 0),
        )
        for member in members
    ]
