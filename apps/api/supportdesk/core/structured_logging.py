"""Structured logging helpers (PII-safe)."""

from typing import Any


def build_log_context(
    *,
    org_id: str | None = None,
    job_id: str | None = None,
    queue: str | None = None,
    platform: str | None = None,
    ticket_id: str | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict."""
    context: dict[str, Any] = {}
    if org_id:
        context["org_id"] = str(org_id)
    if job_id:
        context["job_id"] = str(job_id)
    if queue:
        context["queue"] = queue
    if platform:
        context["platform"] = platform
    if ticket_id:
        context["ticket_id"] = str(ticket_id)
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
