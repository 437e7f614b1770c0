"""Identity resolution: is an inbound sender part of the support team?

Messages from the team's own platform accounts must never open tickets, so
every inbound message is checked against active organization members before
threading.
"""

from __future__ import annotations

from typing import Iterable
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from supportdesk.db.enums import ChannelPlatform
from supportdesk.db.models import OrganizationMember


def _normalize(value: str | None) -> str:
    return (value or "").strip().lower().lstrip("@")


def _linked_ids(member: OrganizationMember, platform: str) -> set[str]:
    raw = (member.linked_identities or {}).get(platform) or []
    if isinstance(raw, str):
        raw = [raw]
    return {_normalize(str(value)) for value in raw if value}


def is_internal(
    db: Session,
    organization_id: UUID,
    sender_email: str | None,
    identity_hints: Iterable[str] | None = None,
    platform: ChannelPlatform | str | None = None,
) -> bool:
    """Return True when the sender is an active member of the organization.

    Resolution order: exact (case-insensitive) email match first, then a
    platform identity hint matching the member's linked identity for that
    platform. No match means external customer.
    """
    email = _normalize(sender_email)
    if email:
        match = (
            db.query(OrganizationMember.id)
            .filter(
                OrganizationMember.organization_id == organization_id,
                OrganizationMember.is_active.is_(True),
                func.lower(OrganizationMember.email) == email,
            )
            .first()
        )
        if match:
            return True

    hints = {_normalize(hint) for hint in (identity_hints or []) if hint}
    if not hints or platform is None:
        return False

    platform_key = platform.value if isinstance(platform, ChannelPlatform) else str(platform)
    members = (
        db.query(OrganizationMember)
        .filter(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.is_active.is_(True),
        )
        .all()
    )
    return any(hints & _linked_ids(member, platform_key) for member in members)
