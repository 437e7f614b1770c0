"""Typed per-organization autonomous AI settings."""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from supportdesk.db.enums import AIProviderKind, AssignmentStrategy


class ComplianceSettings(BaseModel):
    """Data-handling controls for model calls."""

    model_config = ConfigDict(extra="ignore")

    pii_redaction_enabled: bool = True
    ai_provider: AIProviderKind = AIProviderKind.HOSTED
    model: str | None = None
    audit_logging_enabled: bool = True
    data_retention_days: int = Field(default=90, ge=1)


class OrgAISettings(BaseModel):
    """Autonomous triage configuration for one organization."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = False
    auto_response_enabled: bool = False
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    assignment_strategy: AssignmentStrategy = AssignmentStrategy.ROUND_ROBIN
    support_agent_id: UUID | None = None
    recurring_issue_detection: bool = False
    # Open a tracker task for each detected recurring issue
    auto_create_tasks: bool = False
    brand_automated_replies: bool = False
    compliance: ComplianceSettings = Field(default_factory=ComplianceSettings)
