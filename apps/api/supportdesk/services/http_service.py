"""HTTP helpers with retry/backoff for channel, model and tracker APIs."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}
PERMANENT_AUTH_STATUSES = {401, 403}


class ExternalAPIError(RuntimeError):
    """Non-success response from an external API.

    ``permanent`` marks credential problems that retrying will not fix.
    """

    def __init__(self, service: str, status_code: int | None, detail: str | None = None):
        self.service = service
        self.status_code = status_code
        self.detail = detail
        self.permanent = status_code in PERMANENT_AUTH_STATUSES
        super().__init__(f"{service} API error {status_code}: {detail or 'unknown error'}")


def _backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay = delay + random.uniform(0, delay / 2)
    return delay


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: set[int] | None = None,
) -> httpx.Response:
    """Execute an HTTP request with exponential backoff retries."""
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES

    for attempt in range(max_attempts):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= max_attempts - 1:
                raise
            delay = _backoff_delay(attempt, base_delay, max_delay)
            logger.warning("HTTP request failed, retrying", exc_info=exc)
            if delay:
                await asyncio.sleep(delay)
            continue

        if response.status_code in statuses and attempt < max_attempts - 1:
            delay = _backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "HTTP request returned %s, retrying", response.status_code
            )
            if delay:
                await asyncio.sleep(delay)
            continue

        return response

    return response


def ensure_success(response: httpx.Response, service: str) -> dict:
    """Return the JSON body or raise ExternalAPIError with the API's message."""
    if response.status_code >= 400:
        detail = None
        try:
            payload = response.json()
            error = payload.get("error") if isinstance(payload, dict) else None
            if isinstance(error, dict):
                detail = error.get("message")
            elif error:
                detail = str(error)
            elif isinstance(payload, dict):
                detail = payload.get("message") or payload.get("description")
        except ValueError:
            detail = response.text[:200]
        raise ExternalAPIError(service, response.status_code, detail)
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {"data": data}
