"""Organization AI settings - the one place the settings blob is parsed."""

from __future__ import annotations

import logging

from pydantic import ValidationError
from sqlalchemy.orm import Session

from supportdesk.db.models import Organization
from supportdesk.db.types import utcnow
from supportdesk.schemas.ai_settings import OrgAISettings

logger = logging.getLogger(__name__)


def get_ai_settings(org: Organization) -> OrgAISettings:
    """Parse the stored blob; an unreadable blob means AI stays off."""
    try:
        return OrgAISettings.model_validate(org.ai_settings or {})
    except ValidationError as exc:
        logger.warning(
            "Invalid AI settings for org=%s (%d errors), using defaults",
            org.id,
            exc.error_count(),
        )
        return OrgAISettings()


def update_ai_settings(db: Session, org: Organization, changes: dict) -> OrgAISettings:
    """Merge changes into the current settings; raises ValidationError on bad input."""
    current = get_ai_settings(org).model_dump(mode="json")
    compliance_changes = changes.get("compliance")
    merged = {**current, **{k: v for k, v in changes.items() if k != "compliance"}}
    if isinstance(compliance_changes, dict):
        merged["compliance"] = {**current["compliance"], **compliance_changes}
    validated = OrgAISettings.model_validate(merged)

    org.ai_settings = validated.model_dump(mode="json")
    org.updated_at = utcnow()
    db.add(org)
    db.commit()
    return validated
