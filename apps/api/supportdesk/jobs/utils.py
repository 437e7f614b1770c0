"""Shared helpers for worker job handlers."""

from __future__ import annotations

from uuid import UUID


def mask_email(email: str | None) -> str:
    """Log-safe form of an address: first three chars of the local part."""
    if not email:
        return ""
    local, _, domain = email.partition("@")
    prefix = local[:3] if local else ""
    return f"{prefix}...@{domain}" if domain else f"{prefix}..."


def payload_uuid(payload: dict | None, key: str) -> UUID:
    """Required UUID field from a job payload."""
    value = (payload or {}).get(key)
    if not value:
        raise ValueError(f"Missing {key} in job payload")
    return UUID(str(value))
