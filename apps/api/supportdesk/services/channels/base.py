"""Channel adapter interface.

One adapter per platform turns that platform's webhook/poll payloads into
``CanonicalInboundMessage`` objects and sends replies back. The threader,
triage and relay only ever see the canonical types.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from typing import Any, Mapping

import httpx

from supportdesk.db.enums import ChannelPlatform
from supportdesk.schemas.inbound import CanonicalInboundMessage


@dataclass
class ReplyTarget:
    """Where an outbound reply goes.

    ``keys`` holds the ticket's thread keys overlaid with the newest inbound
    message's reply target (thread ts, message id, email Message-ID...).
    """

    thread_key: str | None
    customer_email: str
    customer_name: str | None = None
    subject: str | None = None
    keys: dict[str, Any] = field(default_factory=dict)


@dataclass
class DeliveryReceipt:
    external_message_id: str | None = None
    # Merged into ticket metadata after a successful send
    metadata: dict[str, Any] = field(default_factory=dict)


def get_header(headers: Mapping[str, str], name: str) -> str:
    """Case-insensitive header lookup for plain dicts and Starlette headers."""
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                return candidate
        return ""
    return value


def hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def constant_time_equals(expected: str, provided: str) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())


def synthetic_email(local_part: str | int, platform: str) -> str:
    """Placeholder address for platforms with no email concept."""
    return f"{str(local_part).strip().lower()}@{platform}.local"


class ChannelAdapter:
    """Base adapter; subclasses override what their platform needs."""

    platform: ChannelPlatform
    # False for platforms without request signing (structural validation only)
    signature_required: bool = True

    def parse(self, body: bytes, headers: Mapping[str, str]) -> dict:
        """Decode a webhook body. Raises ValueError on malformed input."""
        data = json.loads(body or b"null")
        if not isinstance(data, dict):
            raise ValueError("Webhook body must be a JSON object")
        return data

    def signing_secret(self, credentials: dict, connection_metadata: dict) -> str | None:
        return credentials.get("signing_secret")

    def verify_signature(
        self,
        body: bytes,
        headers: Mapping[str, str],
        *,
        url: str,
        secret: str | None,
        payload: dict | None = None,
    ) -> bool:
        raise NotImplementedError

    def handshake(self, payload: dict) -> dict | None:
        """Answer subscription/ping handshakes delivered as POSTs."""
        return None

    def verify_challenge(self, query: Mapping[str, str], secret: str | None) -> Any:
        """Answer GET subscription challenges; None means not a valid challenge."""
        return None

    def account_key(self, payload: dict) -> str | None:
        """Platform account id carried by the payload (team, page, bot...)."""
        return None

    def extract_events(self, payload: dict) -> list[dict]:
        return [payload]

    def normalize(self, event: dict) -> CanonicalInboundMessage | None:
        raise NotImplementedError

    def setup_code(self, payload: dict) -> str | None:
        """Link code sent from a not-yet-connected account, if any."""
        return None

    def disconnects(self, payload: dict) -> bool:
        """True when the platform reports the app was removed from the account."""
        return False

    def sync_marker(self, payload: dict) -> str | None:
        """For push-to-poll platforms: marker identifying the sync to run."""
        return None

    def acknowledge(self, payload: dict, ingested: int) -> dict | None:
        """Platform-mandated response body, if any."""
        return None

    async def send_reply(
        self,
        client: httpx.AsyncClient,
        credentials: dict,
        target: ReplyTarget,
        text: str,
        quick_replies: list[str] | None = None,
    ) -> DeliveryReceipt:
        raise NotImplementedError

    async def refresh_credentials(
        self, client: httpx.AsyncClient, credentials: dict
    ) -> dict | None:
        """Return refreshed credentials, or None when the platform has no refresh flow."""
        return None


class PollingAdapter(ChannelAdapter):
    """Adapter whose messages are pulled with a cursor (history id, offset)."""

    async def fetch_new_since(
        self,
        client: httpx.AsyncClient,
        credentials: dict,
        cursor: str | None,
        connection_metadata: dict,
    ) -> tuple[list[CanonicalInboundMessage], str | None]:
        raise NotImplementedError
