"""Instagram messaging + comments adapter (Meta webhooks)."""

from __future__ import annotations

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

GRAPH_API_BASE = "https://graph.facebook.com"


class InstagramAdapter(ChannelAdapter):
    platform = ChannelPlatform.INSTAGRAM

    def signing_secret(self, credentials: dict, connection_metadata: dict) -> str | None:
        return credentials.get("app_secret") or settings.META_APP_SECRET or None

    def verify_signature(self, body, headers, *, url, secret, payload=None) -> bool:
        signature = get_header(headers, "X-Hub-Signature-256")
        if not secret or not signature.startswith("sha256="):
            return False
        return constant_time_equals(hmac_sha256_hex(secret, body), signature[len("sha256="):])

    def verify_challenge(self, query, secret):
        if query.get("hub.mode") != "subscribe":
            return None
        expected = settings.META_VERIFY_TOKEN
        if not expected or not constant_time_equals(expected, query.get("hub.verify_token", "")):
            return None
        return query.get("hub.challenge")

    def account_key(self, payload: dict) -> str | None:
        entries = payload.get("entry") or []
        return str(entries[0].get("id")) if entries and entries[0].get("id") else None

    def extract_events(self, payload: dict) -> list[dict]:
        events = []
        for entry in payload.get("entry") or []:
            account_id = str(entry.get("id", ""))
            for item in entry.get("messaging") or []:
                events.append({"kind": "dm", "account_id": account_id, **item})
            for change in entry.get("changes") or []:
                if change.get("field") == "comments":
                    events.append({"kind": "comment", "account_id": account_id, **(change.get("value") or {})})
        return events

    def normalize(self, event: dict) -> CanonicalInboundMessage | None:
        if event.get("kind") == "comment":
            return self._normalize_comment(event)
        message = event.get("message") or {}
        sender_id = str((event.get("sender") or {}).get("id", ""))
        text = (message.get("text") or "").strip()
        # Echoes are copies of what the account itself sent
        if message.get("is_echo") or not sender_id or sender_id == event.get("account_id"):
            return None
        if not text or not message.get("mid"):
            return None
        return CanonicalInboundMessage(
            platform=self.platform,
            external_message_id=message["mid"],
            external_thread_key=sender_id,
            sender_external_id=sender_id,
            sender_display_name=f"Instagram User {sender_id}",
            sender_email=synthetic_email(sender_id, "instagram"),
            body=text,
            subject="Instagram direct message",
            raw_metadata={"instagramAccountId": event.get("account_id")},
            thread_metadata={"instagramRecipientId": sender_id, "instagramKind": "dm"},
            reply_target={"instagramMessageId": message["mid"]},
            identity_hints=[sender_id],
        )

    def _normalize_comment(self, event: dict) -> CanonicalInboundMessage | None:
        author = event.get("from") or {}
        sender_id = str(author.get("id", ""))
        text = (event.get("text") or "").strip()
        comment_id = event.get("id")
        media_id = (event.get("media") or {}).get("id", "")
        if not sender_id or sender_id == event.get("account_id") or not text or not comment_id:
            return None
        username = author.get("username")
        hints = [sender_id] + ([username.lower()] if username else [])
        return CanonicalInboundMessage(
            platform=self.platform,
            external_message_id=str(comment_id),
            external_thread_key=f"comment:{media_id}:{sender_id}",
            sender_external_id=sender_id,
            sender_display_name=f"@{username}" if username else f"Instagram User {sender_id}",
            sender_email=synthetic_email(sender_id, "instagram"),
            body=text,
            subject="Instagram comment",
            raw_metadata={"instagramAccountId": event.get("account_id"), "instagramMediaId": media_id},
            thread_metadata={"instagramRecipientId": sender_id, "instagramKind": "comment"},
            reply_target={"instagramCommentId": str(comment_id)},
            identity_hints=hints,
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
            raise ExternalAPIError("instagram", 401, "Missing access token")
        version = settings.META_API_VERSION
        params = {"access_token": token}

        if target.keys.get("instagramKind") == "comment" and target.keys.get("instagramCommentId"):
            comment_id = target.keys["instagramCommentId"]
            response = await request_with_retries(
                lambda: client.post(
                    f"{GRAPH_API_BASE}/{version}/{comment_id}/replies",
                    params=params,
                    json={"message": text},
                )
            )
            data = ensure_success(response, "instagram")
            return DeliveryReceipt(external_message_id=data.get("id"))

        recipient = target.keys.get("instagramRecipientId") or target.thread_key
        if not recipient:
            raise ExternalAPIError("instagram", None, "Missing recipient id")
        message: dict = {"text": text}
        if quick_replies:
            message["quick_replies"] = [
                {"content_type": "text", "title": option[:20], "payload": f"quick_reply_{index}"}
                for index, option in enumerate(quick_replies[:13])
            ]
        response = await request_with_retries(
            lambda: client.post(
                f"{GRAPH_API_BASE}/{version}/me/messages",
                params=params,
                json={"recipient": {"id": recipient}, "message": message},
            )
        )
        data = ensure_success(response, "instagram")
        return DeliveryReceipt(external_message_id=data.get("message_id"))
