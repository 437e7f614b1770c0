"""Microsoft Teams adapter.

Inbound messages arrive as Bot Framework activities from a Teams outgoing
webhook, signed with ``Authorization: HMAC <base64>`` over the raw body.
Replies go out through Microsoft Graph with the connection's delegated
OAuth token.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import re

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
    synthetic_email,
)
from supportdesk.services.http_service import ExternalAPIError, ensure_success, request_with_retries

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.microsoft.com/v1.0"
MICROSOFT_TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"

_MENTION = re.compile(r"<at>.*?</at>", re.IGNORECASE | re.DOTALL)
_TAG = re.compile(r"<[^>]+>")


def compute_teams_signature(secret: str, body: bytes) -> str:
    """Outgoing-webhook signature; the shared secret is issued base64-encoded."""
    try:
        key = base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError):
        return ""
    return base64.b64encode(hmac.new(key, body, hashlib.sha256).digest()).decode()


def _plain_text(text: str) -> str:
    return _TAG.sub("", _MENTION.sub("", text or "")).replace("&nbsp;", " ").strip()


class TeamsAdapter(ChannelAdapter):
    platform = ChannelPlatform.TEAMS

    def signing_secret(self, credentials: dict, connection_metadata: dict) -> str | None:
        return credentials.get("webhook_secret") or settings.TEAMS_WEBHOOK_SECRET or None

    def verify_signature(self, body, headers, *, url, secret, payload=None) -> bool:
        authorization = get_header(headers, "Authorization")
        if not secret or not authorization.startswith("HMAC "):
            return False
        return constant_time_equals(compute_teams_signature(secret, body), authorization[len("HMAC "):])

    def account_key(self, payload: dict) -> str | None:
        tenant = ((payload.get("channelData") or {}).get("tenant") or {}).get("id")
        tenant = tenant or (payload.get("conversation") or {}).get("tenantId")
        return str(tenant) if tenant else None

    def normalize(self, event: dict) -> CanonicalInboundMessage | None:
        if event.get("type") != "message":
            return None
        sender = event.get("from") or {}
        conversation = event.get("conversation") or {}
        if sender.get("role") == "bot" or not sender.get("id") or not conversation.get("id"):
            return None
        text = _plain_text(event.get("text") or "")
        if not text:
            return None

        user_id = sender.get("aadObjectId") or sender["id"]
        conversation_id = conversation["id"]
        channel_data = event.get("channelData") or {}
        team_id = (channel_data.get("team") or {}).get("id")
        channel_id = (channel_data.get("channel") or {}).get("id")
        thread_metadata = {"teamsConversationId": conversation_id}
        if team_id and channel_id:
            thread_metadata.update({"teamsTeamId": team_id, "teamsChannelId": channel_id})
        activity_id = event.get("id") or ""
        return CanonicalInboundMessage(
            platform=self.platform,
            external_message_id=f"{conversation_id}:{activity_id}",
            external_thread_key=conversation_id,
            sender_external_id=str(user_id),
            sender_display_name=sender.get("name") or f"Teams User {sender['id']}",
            sender_email=synthetic_email(user_id, "teams"),
            body=text,
            subject="Teams message",
            raw_metadata={"teamsServiceUrl": event.get("serviceUrl")},
            thread_metadata=thread_metadata,
            reply_target={"teamsActivityId": activity_id},
            identity_hints=[str(sender["id"]), str(user_id)],
        )

    async def send_reply(
        self,
        client: httpx.AsyncClient,
        credentials: dict,
        target: ReplyTarget,
        text: str,
        quick_replies: list[str] | None = None,
    ) -> DeliveryReceipt:
        token = credentials.get("access_token")
        if not token:
            raise ExternalAPIError("teams", 401, "Missing access token")

        team_id = target.keys.get("teamsTeamId")
        channel_id = target.keys.get("teamsChannelId")
        if team_id and channel_id:
            url = f"{GRAPH_API_BASE}/teams/{team_id}/channels/{channel_id}/messages"
        else:
            chat_id = target.keys.get("teamsConversationId") or target.thread_key
            if not chat_id:
                raise ExternalAPIError("teams", 400, "Ticket has no Teams conversation")
            url = f"{GRAPH_API_BASE}/chats/{chat_id}/messages"

        content = text
        if quick_replies:
            options = "\n".join(f"{index}. {option}" for index, option in enumerate(quick_replies, 1))
            content = f"{text}\n\nReply with one of:\n{options}"

        response = await request_with_retries(
            lambda: client.post(
                url,
                headers={"Authorization": f"Bearer {token}"},
                json={"body": {"content": content}},
            )
        )
        data = ensure_success(response, "teams")
        return DeliveryReceipt(external_message_id=data.get("id"))

    async def refresh_credentials(self, client, credentials):
        refresh_token = credentials.get("refresh_token")
        if not refresh_token or not settings.TEAMS_CLIENT_ID:
            return None
        response = await request_with_retries(
            lambda: client.post(
                MICROSOFT_TOKEN_URL,
                data={
                    "client_id": settings.TEAMS_CLIENT_ID,
                    "client_secret": settings.TEAMS_CLIENT_SECRET,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        )
        data = ensure_success(response, "microsoft_oauth")
        if not data.get("access_token"):
            return None
        logger.info("Teams access token refreshed")
        return {
            **credentials,
            "access_token": data["access_token"],
            # Microsoft rotates refresh tokens on use
            "refresh_token": data.get("refresh_token") or refresh_token,
            "expires_in": data.get("expires_in"),
        }
