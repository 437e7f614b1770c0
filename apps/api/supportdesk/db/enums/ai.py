"""Autonomous AI configuration enums."""

from enum import Enum


class AssignmentStrategy(str, Enum):
    """How a human assignee is picked when the AI hands off."""

    ROUND_ROBIN = "round_robin"
    LEAST_BUSY = "least_busy"


class AIProviderKind(str, Enum):
    """Compliance-level choice of model backend."""

    HOSTED = "hosted"  # Public model API (Gemini)
    ENTERPRISE_HOSTED = "enterprise_hosted"  # Zero-retention deployment (Azure OpenAI)
    SELF_HOSTED = "self_hosted"  # Model served inside the customer's network
