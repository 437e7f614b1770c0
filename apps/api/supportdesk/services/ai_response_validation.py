"""Helpers for parsing and validating structured model output.

Models are asked for JSON but routinely wrap it in prose or code fences, or
return nothing usable. Every helper here degrades to ``None`` instead of raising so callers
can fall back to human handling.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def _strip_code_fences(text: str) -> str:
    content = text.strip()
    if content.startswith("```"):
        lines = content.splitlines()
        if lines:
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        content = "\n".join(lines).strip()
    return content


def _loads_embedded(text: str | None):
    if not text:
        return None
    content = _strip_code_fences(text)
    try:
        return json.loads(content)
    except json.JSONDecodeError as exc:
        match = _OBJECT_RE.search(content)
        if not match:
            logger.warning("Failed to parse JSON object: %s", exc)
            return None
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError as inner_exc:
            logger.warning("Failed to parse JSON object: %s", inner_exc)
            return None


def parse_json_object(text: str | None) -> dict | None:
    data = _loads_embedded(text)
    return data if isinstance(data, dict) else None


def validate_model(model_cls: type[ModelT], data: dict | None) -> ModelT | None:
    if data is None:
        return None
    try:
        return model_cls.model_validate(data)
    except ValidationError as exc:
        logger.warning("Model output failed validation: %s", exc.error_count())
        return None


def parse_model_output(model_cls: type[ModelT], text: str | None) -> ModelT | None:
    """Extract the first JSON object from text and validate it as model_cls."""
    return validate_model(model_cls, parse_json_object(text))
