"""Slack Events API adapter."""

from __future__ import annotations

import logging
import time

import httpx

from supportdesk.core.config import settings
from supportdesk.db.enums import ChannelPlatform
from supportdesk.schemas.inbound import CanonicalInboundMessage
from supportdesk.services.channels.base import (
    ChannelAdapter,
    DeliveryReceipt,
    ReplyTarget,
    constant_time_equals,
    get_header,
    hmac_sha256_hex,
    synthetic_email,
)
from supportdesk.services.http_service import ExternalAPIError, ensure_success, request_with_retries

logger = logging.getLogger(__name__)

SLACK_POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"

# Subtypes that still carry a real customer message
_ACCEPTED_SUBTYPES = {None, "file_share", "thread_broadcast"}


def compute_slack_signature(secret: str, timestamp: str, body: bytes) -> str:
    """Slack sends: v0:timestamp:body, HMAC-SHA256 with the signing secret."""
    message = b"v0:" + timestamp.encode() + b":" + body
    return f"v0={hmac_sha256_hex(secret, message)}"


class SlackAdapter(ChannelAdapter):
    platform = ChannelPlatform.SLACK

    def signing_secret(self, credentials: dict, connection_metadata: dict) -> str | None:
        return credentials.get("signing_secret") or settings.SLACK_SIGNING_SECRET or None

    def verify_signature(self, body, headers, *, url, secret, payload=None) -> bool:
        timestamp = get_header(headers, "X-Slack-Request-Timestamp")
        signature = get_header(headers, "X-Slack-Signature")
        if not secret or not timestamp or not signature:
            return False
        try:
            skew = abs(time.time() - int(timestamp))
        except ValueError:
            return False
        if skew > settings.SLACK_MAX_CLOCK_SKEW_SECONDS:
            logger.warning("Slack webhook timestamp outside replay window")
            return False
        return constant_time_equals(compute_slack_signature(secret, timestamp, body), signature)

    def handshake(self, payload: dict) -> dict | None:
        if payload.get("type") == "url_verification":
            return {"challenge": payload.get("challenge", "")}
        return None

    def account_key(self, payload: dict) -> str | None:
        return payload.get("team_id")

    def disconnects(self, payload: dict) -> bool:
        if payload.get("type") != "event_callback":
            return False
        return (payload.get("event") or {}).get("type") in {"app_uninstalled", "tokens_revoked"}

    def extract_events(self, payload: dict) -> list[dict]:
        if payload.get("type") != "event_callback":
            return []
        event = payload.get("event") or {}
        return [{**event, "_event_id": payload.get("event_id"), "_team_id": payload.get("team_id")}]

    def normalize(self, event: dict) -> CanonicalInboundMessage | None:
        if event.get("type") != "message":
            return None
        # Bot posts (including our own replies) echo back as events
        if event.get("bot_id") or event.get("subtype") not in _ACCEPTED_SUBTYPES:
            return None
        user = event.get("user")
        channel = event.get("channel")
        text = (event.get("text") or "").strip()
        ts = event.get("ts")
        if not user or not channel or not text or not ts:
            return None

        thread_ts = event.get("thread_ts") or ts
        profile = event.get("user_profile") or {}
        display_name = profile.get("real_name") or profile.get("display_name") or f"Slack User {user}"
        return CanonicalInboundMessage(
            platform=self.platform,
            external_message_id=str(ts),
            external_thread_key=f"{channel}:{user}",
            sender_external_id=user,
            sender_display_name=display_name,
            sender_email=synthetic_email(user, "slack"),
            body=text,
            subject=f"Message from Slack channel {channel}",
            raw_metadata={"slackEventId": event.get("_event_id"), "slackTeamId": event.get("_team_id")},
            thread_metadata={"slackChannelId": channel, "slackUserId": user},
            reply_target={"slackMessageTs": ts, "slackThreadTs": thread_ts},
            identity_hints=[user],
        )

    async def send_reply(
        self,
        client: httpx.AsyncClient,
        credentials: dict,
        target: ReplyTarget,
        text: str,
        quick_replies: list[str] | None = None,
    ) -> DeliveryReceipt:
        token = credentials.get("bot_token")
        channel = target.keys.get("slackChannelId")
        if not token or not channel:
            raise ExternalAPIError("slack", None, "Missing bot token or channel")

        body: dict = {"channel": channel, "text": text}
        thread_ts = target.keys.get("slackThreadTs") or target.keys.get("slackMessageTs")
        if thread_ts:
            body["thread_ts"] = thread_ts
        if quick_replies:
            body["blocks"] = [
                {"type": "section", "text": {"type": "mrkdwn", "text": text}},
                {
                    "type": "actions",
                    "elements": [
                        {
                            "type": "button",
                            "text": {"type": "plain_text", "text": option[:75]},
                            "value": option[:2000],
                            "action_id": f"quick_reply_{index}",
                        }
                        for index, option in enumerate(quick_replies[:5])
                    ],
                },
            ]

        response = await request_with_retries(
            lambda: client.post(
                SLACK_POST_MESSAGE_URL,
                headers={"Authorization": f"Bearer {token}"},
                json=body,
            )
        )
        data = ensure_success(response, "slack")
        # Slack reports most failures as 200 with ok=false
        if not data.get("ok"):
            error = data.get("error") or "unknown_error"
            status = 401 if error in {"invalid_auth", "token_revoked", "account_inactive"} else 400
            raise ExternalAPIError("slack", status, error)
        return DeliveryReceipt(external_message_id=data.get("ts"))
