"""Discord adapter.

Inbound arrives two ways: the interactions endpoint (``/support`` slash
command, Ed25519-signed) and REST polling of the channels listed in the
connection's ``channel_ids`` metadata. Both produce the same canonical
message keyed by ``channel:author``.
"""

from __future__ import annotations

import json
import logging

import httpx
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from supportdesk.core.config import settings
from supportdesk.db.enums import ChannelPlatform
from supportdesk.schemas.inbound import CanonicalInboundMessage
from supportdesk.services.channels.base import (
    DeliveryReceipt,
    PollingAdapter,
    ReplyTarget,
    get_header,
    synthetic_email,
)
from supportdesk.services.http_service import ExternalAPIError, ensure_success, request_with_retries

logger = logging.getLogger(__name__)

DISCORD_API_BASE = "https://discord.com/api/v10"
SUPPORT_COMMAND = "support"
MAX_CONTENT_LENGTH = 2000

# Interaction types
PING = 1
APPLICATION_COMMAND = 2
# Interaction callback types
PONG = 1
CHANNEL_MESSAGE_WITH_SOURCE = 4
EPHEMERAL_FLAG = 64


def _display_name(user: dict) -> str:
    return user.get("global_name") or user.get("username") or f"Discord User {user.get('id')}"


class DiscordAdapter(PollingAdapter):
    platform = ChannelPlatform.DISCORD

    def signing_secret(self, credentials: dict, connection_metadata: dict) -> str | None:
        return (
            credentials.get("public_key")
            or connection_metadata.get("public_key")
            or settings.DISCORD_PUBLIC_KEY
            or None
        )

    def verify_signature(self, body, headers, *, url, secret, payload=None) -> bool:
        signature = get_header(headers, "X-Signature-Ed25519")
        timestamp = get_header(headers, "X-Signature-Timestamp")
        if not secret or not signature or not timestamp:
            return False
        try:
            public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(secret))
            public_key.verify(bytes.fromhex(signature), timestamp.encode() + body)
        except (InvalidSignature, ValueError):
            return False
        return True

    def handshake(self, payload: dict) -> dict | None:
        if payload.get("type") == PING:
            return {"type": PONG}
        return None

    def account_key(self, payload: dict) -> str | None:
        return payload.get("guild_id")

    def extract_events(self, payload: dict) -> list[dict]:
        if payload.get("type") != APPLICATION_COMMAND:
            return []
        if (payload.get("data") or {}).get("name") != SUPPORT_COMMAND:
            return []
        return [payload]

    def acknowledge(self, payload: dict, ingested: int) -> dict | None:
        if payload.get("type") != APPLICATION_COMMAND:
            return None
        content = (
            "Thanks! Your request has been sent to our support team."
            if ingested
            else "Please include a message, e.g. `/support message: my order is late`."
        )
        return {
            "type": CHANNEL_MESSAGE_WITH_SOURCE,
            "data": {"content": content, "flags": EPHEMERAL_FLAG},
        }

    def normalize(self, event: dict) -> CanonicalInboundMessage | None:
        if event.get("type") == APPLICATION_COMMAND:
            return self._normalize_interaction(event)
        return self._normalize_message(event)

    def _normalize_interaction(self, interaction: dict) -> CanonicalInboundMessage | None:
        user = (interaction.get("member") or {}).get("user") or interaction.get("user") or {}
        channel_id = interaction.get("channel_id") or (interaction.get("channel") or {}).get("id")
        options = (interaction.get("data") or {}).get("options") or []
        text = " ".join(str(option.get("value", "")) for option in options).strip()
        if not user.get("id") or not channel_id or not text or user.get("bot"):
            return None
        return self._build(
            message_id=interaction["id"],
            channel_id=channel_id,
            guild_id=interaction.get("guild_id"),
            user=user,
            text=text,
            reply_to=None,
        )

    def _normalize_message(self, message: dict) -> CanonicalInboundMessage | None:
        author = message.get("author") or {}
        text = (message.get("content") or "").strip()
        if not author.get("id") or author.get("bot") or not text:
            return None
        return self._build(
            message_id=message["id"],
            channel_id=message.get("channel_id"),
            guild_id=message.get("guild_id"),
            user=author,
            text=text,
            reply_to=message["id"],
        )

    def _build(self, *, message_id, channel_id, guild_id, user, text, reply_to):
        user_id = str(user["id"])
        reply_target = {"discordChannelId": channel_id}
        if reply_to:
            reply_target["discordMessageId"] = reply_to
        hints = [user_id]
        if user.get("username"):
            hints.append(user["username"].lower())
        return CanonicalInboundMessage(
            platform=self.platform,
            external_message_id=str(message_id),
            external_thread_key=f"{channel_id}:{user_id}",
            sender_external_id=user_id,
            sender_display_name=_display_name(user),
            sender_email=synthetic_email(user_id, "discord"),
            body=text,
            subject=f"Discord message from {_display_name(user)}",
            raw_metadata={"discordGuildId": guild_id},
            thread_metadata={"discordChannelId": channel_id, "discordUserId": user_id, "discordGuildId": guild_id},
            reply_target=reply_target,
            identity_hints=hints,
        )

    def _auth(self, credentials: dict) -> dict:
        token = credentials.get("bot_token")
        if not token:
            raise ExternalAPIError("discord", 401, "Missing bot token")
        return {"Authorization": f"Bot {token}"}

    async def fetch_new_since(self, client, credentials, cursor, connection_metadata):
        headers = self._auth(credentials)
        try:
            positions = json.loads(cursor) if cursor else {}
        except ValueError:
            positions = {}
        if not isinstance(positions, dict):
            positions = {}

        guild_id = connection_metadata.get("guild_id")
        messages: list[CanonicalInboundMessage] = []
        for channel_id in connection_metadata.get("channel_ids") or []:
            channel_id = str(channel_id)
            last_seen = positions.get(channel_id)
            # First sight of a channel: start at its newest message, skip backlog
            params = {"limit": 100, "after": last_seen} if last_seen else {"limit": 1}
            response = await request_with_retries(
                lambda: client.get(
                    f"{DISCORD_API_BASE}/channels/{channel_id}/messages",
                    headers=headers,
                    params=params,
                )
            )
            data = ensure_success(response, "discord")
            batch = sorted(data.get("data") or [], key=lambda item: int(item["id"]))
            if not batch:
                continue
            positions[channel_id] = batch[-1]["id"]
            if not last_seen:
                continue
            for item in batch:
                normalized = self._normalize_message({"channel_id": channel_id, "guild_id": guild_id, **item})
                if normalized is not None:
                    messages.append(normalized)
        return messages, json.dumps(positions, sort_keys=True)

    async def send_reply(
        self,
        client: httpx.AsyncClient,
        credentials: dict,
        target: ReplyTarget,
        text: str,
        quick_replies: list[str] | None = None,
    ) -> DeliveryReceipt:
        headers = self._auth(credentials)
        channel_id = target.keys.get("discordChannelId")
        if not channel_id:
            raise ExternalAPIError("discord", None, "Missing channel id")

        body: dict = {"content": text[:MAX_CONTENT_LENGTH]}
        message_id = target.keys.get("discordMessageId")
        if message_id:
            body["message_reference"] = {"message_id": message_id, "fail_if_not_exists": False}
        if quick_replies:
            body["components"] = [
                {
                    "type": 1,
                    "components": [
                        {"type": 2, "style": 1, "label": option[:80], "custom_id": f"quick_reply_{index}"}
                        for index, option in enumerate(quick_replies[:5])
                    ],
                }
            ]

        response = await request_with_retries(
            lambda: client.post(
                f"{DISCORD_API_BASE}/channels/{channel_id}/messages",
                headers=headers,
                json=body,
            )
        )
        data = ensure_success(response, "discord")
        return DeliveryReceipt(external_message_id=data.get("id"))
