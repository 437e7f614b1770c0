"""Autonomous triage: answer a ticket with the model, or hand it to a human.

``TriageEngine.triage`` is pure over a pre-loaded ``TriageContext`` plus one
model call; database reads happen in ``load_triage_context`` and writes in
the ticket job handler.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from supportdesk.core.structured_logging import build_log_context
from supportdesk.db.enums import AIProviderKind, SenderType
from supportdesk.db.models import Organization, SupportAgent, TicketMessage
from supportdesk.schemas.ai_settings import OrgAISettings
from supportdesk.services.ai_provider import AIProvider, ChatMessage, CompletionConfig, get_provider
from supportdesk.services.ai_response_validation import parse_model_output
from supportdesk.services.ai_settings_service import get_ai_settings
from supportdesk.services.assignment_service import CandidateStats, load_candidates, select_assignee
from supportdesk.services.pii_redactor import PIIRedactor, pii_redactor
from supportdesk.services.ticket_repository import ticket_repository

logger = logging.getLogger(__name__)

MAX_AGENT_SOURCES = 5
TRIAGE_TEMPERATURE = 0.3
TRIAGE_MAX_TOKENS = 1024

TRIAGE_PROMPT = """You are analyzing a customer support ticket.
Decide:
1. Can you provide a helpful solution to this issue? (yes/no)
2. Your confidence level (0-1)
3. If yes, what is the solution?

Customer issue:
{customer_message}

Reference material:
{sources}

Respond ONLY with valid JSON in this exact format (no markdown, no code blocks):
{{
  "canHandle": boolean,
  "confidence": number (0-1),
  "solution": "detailed solution if canHandle is true"
}}"""


class ModelAssessment(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    can_handle: bool = Field(alias="canHandle")
    confidence: float = Field(ge=0.0, le=1.0)
    solution: str | None = None


@dataclass
class AgentProfile:
    name: str
    instructions: str | None
    sources: list[str] = field(default_factory=list)


@dataclass
class TriageContext:
    organization_id: UUID
    ticket_id: UUID
    subject: str
    customer_message: str
    settings: OrgAISettings
    agent: AgentProfile | None = None
    candidates: list[CandidateStats] = field(default_factory=list)


@dataclass
class TriageDecision:
    should_respond: bool
    confidence: float
    should_assign: bool
    response: str | None = None
    assignee_id: UUID | None = None
    pii_redacted: bool = False
    redaction_count: int = 0
    reason: str = ""


class TriageEngine:
    def __init__(
        self,
        provider_factory: Callable[[AIProviderKind], AIProvider] = get_provider,
        redactor: PIIRedactor | None = None,
    ):
        self.provider_factory = provider_factory
        self.redactor = redactor or pii_redactor

    def _hand_off(self, context: TriageContext, confidence: float, reason: str, **extra) -> TriageDecision:
        return TriageDecision(
            should_respond=False,
            confidence=confidence,
            should_assign=True,
            assignee_id=select_assignee(context.settings.assignment_strategy, context.candidates),
            reason=reason,
            **extra,
        )

    async def triage(self, context: TriageContext) -> TriageDecision:
        ai_settings = context.settings
        if not ai_settings.enabled:
            return self._hand_off(context, 0.0, "ai_disabled")
        if not ai_settings.auto_response_enabled:
            return self._hand_off(context, 0.0, "auto_response_disabled")
        if context.agent is None:
            return self._hand_off(context, 0.0, "no_agent_profile")

        compliance = ai_settings.compliance
        customer_message = context.customer_message or context.subject
        redaction_count = 0
        if compliance.pii_redaction_enabled:
            redacted = self.redactor.redact(customer_message)
            customer_message = redacted.text
            redaction_count = len(redacted.redactions)
            if redacted.has_redactions:
                logger.info(
                    "PII redaction applied: %d items (%s)",
                    redaction_count,
                    ", ".join(sorted({r.type.value for r in redacted.redactions})),
                    extra=build_log_context(org_id=context.organization_id, ticket_id=context.ticket_id),
                )

        messages = []
        if context.agent.instructions:
            messages.append(ChatMessage(role="system", content=context.agent.instructions))
        messages.append(
            ChatMessage(
                role="user",
                content=TRIAGE_PROMPT.format(
                    customer_message=customer_message,
                    sources="\n".join(context.agent.sources[:MAX_AGENT_SOURCES]) or "(none)",
                ),
            )
        )

        provider = self.provider_factory(compliance.ai_provider)
        completion = await provider.complete(
            messages,
            CompletionConfig(
                model=compliance.model,
                temperature=TRIAGE_TEMPERATURE,
                max_tokens=TRIAGE_MAX_TOKENS,
                json_output=True,
            ),
        )
        if compliance.audit_logging_enabled:
            logger.info(
                "AI provider used for triage (provider=%s model=%s redactions=%d)",
                completion.provider,
                completion.model,
                redaction_count,
                extra=build_log_context(org_id=context.organization_id, ticket_id=context.ticket_id),
            )

        extra = {"pii_redacted": redaction_count > 0, "redaction_count": redaction_count}
        assessment = parse_model_output(ModelAssessment, completion.text)
        if assessment is None:
            return self._hand_off(context, 0.0, "malformed_model_output", **extra)

        solution = (assessment.solution or "").strip()
        if (
            assessment.can_handle
            and solution
            and assessment.confidence >= ai_settings.confidence_threshold
        ):
            return TriageDecision(
                should_respond=True,
                confidence=assessment.confidence,
                should_assign=False,
                # Customer-facing text keeps the placeholders; restore is for internal display only
                response=solution,
                reason="confident",
                **extra,
            )
        return self._hand_off(context, assessment.confidence, "below_threshold", **extra)


def _load_agent(db: Session, organization_id: UUID, agent_id: UUID | None) -> AgentProfile | None:
    """Configured agent, else the newest active one."""
    agent = None
    if agent_id:
        agent = (
            db.query(SupportAgent)
            .filter(
                SupportAgent.id == agent_id,
                SupportAgent.organization_id == organization_id,
                SupportAgent.is_active.is_(True),
            )
            .first()
        )
    if agent is None:
        agent = (
            db.query(SupportAgent)
            .filter(
                SupportAgent.organization_id == organization_id,
                SupportAgent.is_active.is_(True),
            )
            .order_by(SupportAgent.created_at.desc())
            .first()
        )
    if agent is None:
        return None
    return AgentProfile(
        name=agent.name,
        instructions=agent.instructions,
        sources=[source.content for source in agent.sources[:MAX_AGENT_SOURCES]],
    )


def load_triage_context(
    db: Session, ticket_id: UUID, message_id: UUID | None = None
) -> TriageContext | None:
    ticket = ticket_repository.get(db, ticket_id)
    if ticket is None:
        return None
    org = db.get(Organization, ticket.organization_id)
    ai_settings = get_ai_settings(org) if org is not None else OrgAISettings()

    message = None
    if message_id is not None:
        message = db.get(TicketMessage, message_id)
        if message is not None and (message.ticket_id != ticket.id or message.sender_type != SenderType.CUSTOMER):
            message = None
    if message is None:
        message = ticket_repository.first_customer_message(db, ticket.id)

    return TriageContext(
        organization_id=ticket.organization_id,
        ticket_id=ticket.id,
        subject=ticket.subject,
        customer_message=message.body if message is not None else ticket.subject,
        settings=ai_settings,
        agent=_load_agent(db, ticket.organization_id, ai_settings.support_agent_id),
        candidates=load_candidates(db, ticket.organization_id),
    )


_engine: TriageEngine | None = None


def get_triage_engine() -> TriageEngine:
    global _engine
    if _engine is None:
        _engine = TriageEngine()
    return _engine
