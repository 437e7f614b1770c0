"""Telegram Bot API adapter.

A chat is linked to an organization by sending ``/connect CODE`` to the
shared bot; after that the chat id routes its updates. Organizations
running their own bot can instead be polled with ``getUpdates``.
"""

from __future__ import annotations

import logging
import re

import httpx

from supportdesk.core.config import settings
from supportdesk.db.enums import ChannelPlatform
from supportdesk.schemas.inbound import CanonicalInboundMessage
from supportdesk.services.channels.base import (
    DeliveryReceipt,
    PollingAdapter,
    ReplyTarget,
    constant_time_equals,
    get_header,
    synthetic_email,
)
from supportdesk.services.http_service import ExternalAPIError, ensure_success, request_with_retries

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"
CONNECT_COMMAND = re.compile(r"^/connect(?:@\w+)?\s+([0-9A-Fa-f]{6})\s*$")


def _message_of(update: dict) -> dict | None:
    # Edits are ignored; only new messages and channel posts open or extend tickets
    return update.get("message") or update.get("channel_post")


class TelegramAdapter(PollingAdapter):
    platform = ChannelPlatform.TELEGRAM
    # Telegram signs nothing; a secret token header is optional
    signature_required = False

    def signing_secret(self, credentials: dict, connection_metadata: dict) -> str | None:
        return credentials.get("webhook_secret") or settings.TELEGRAM_WEBHOOK_SECRET or None

    def verify_signature(self, body, headers, *, url, secret, payload=None) -> bool:
        if secret:
            return constant_time_equals(secret, get_header(headers, "X-Telegram-Bot-Api-Secret-Token"))
        return isinstance(payload, dict) and isinstance(payload.get("update_id"), int)

    def account_key(self, payload: dict) -> str | None:
        message = _message_of(payload) or {}
        chat_id = (message.get("chat") or {}).get("id")
        return str(chat_id) if chat_id is not None else None

    def setup_code(self, payload: dict) -> str | None:
        message = _message_of(payload) or {}
        match = CONNECT_COMMAND.match((message.get("text") or "").strip())
        return match.group(1).upper() if match else None

    def normalize(self, event: dict) -> CanonicalInboundMessage | None:
        message = _message_of(event)
        if not message:
            return None
        sender = message.get("from") or {}
        chat = message.get("chat") or {}
        text = (message.get("text") or message.get("caption") or "").strip()
        if sender.get("is_bot") or not text or chat.get("id") is None:
            return None
        if self.setup_code(event):
            return None

        user_id = sender.get("id") or chat.get("id")
        username = sender.get("username")
        local_part = username or f"user{user_id}"
        display_name = " ".join(
            part for part in [sender.get("first_name"), sender.get("last_name")] if part
        ) or username or chat.get("title") or f"Telegram User {user_id}"
        chat_id = str(chat["id"])
        hints = [str(user_id)]
        if username:
            hints.append(username.lower())
        return CanonicalInboundMessage(
            platform=self.platform,
            external_message_id=f"{chat_id}:{message['message_id']}",
            external_thread_key=chat_id,
            sender_external_id=str(user_id),
            sender_display_name=display_name,
            sender_email=synthetic_email(local_part, "telegram"),
            body=text,
            subject=f"Telegram message from {sender.get('first_name') or display_name}",
            raw_metadata={"telegramUpdateId": event.get("update_id")},
            thread_metadata={"telegramChatId": chat_id},
            reply_target={"telegramMessageId": message["message_id"]},
            identity_hints=hints,
        )

    def _url(self, credentials: dict, method: str) -> str:
        token = credentials.get("bot_token")
        if not token:
            raise ExternalAPIError("telegram", 401, "Missing bot token")
        return f"{TELEGRAM_API_BASE}/bot{token}/{method}"

    async def fetch_new_since(self, client, credentials, cursor, connection_metadata):
        params: dict = {"timeout": 0, "allowed_updates": '["message","channel_post"]'}
        if cursor:
            params["offset"] = int(cursor)
        url = self._url(credentials, "getUpdates")
        response = await request_with_retries(lambda: client.get(url, params=params))
        data = ensure_success(response, "telegram")
        updates = data.get("result") or []
        if not updates:
            return [], cursor
        # Acknowledge everything up to the newest update, including skipped ones
        next_offset = str(max(update["update_id"] for update in updates) + 1)
        messages = [m for m in (self.normalize(update) for update in updates) if m is not None]
        return messages, next_offset

    async def send_reply(
        self,
        client: httpx.AsyncClient,
        credentials: dict,
        target: ReplyTarget,
        text: str,
        quick_replies: list[str] | None = None,
    ) -> DeliveryReceipt:
        chat_id = target.keys.get("telegramChatId") or target.thread_key
        if not chat_id:
            raise ExternalAPIError("telegram", None, "Missing chat id")
        body: dict = {"chat_id": chat_id, "text": text}
        reply_to = target.keys.get("telegramMessageId")
        if reply_to:
            body["reply_parameters"] = {"message_id": reply_to, "allow_sending_without_reply": True}
        if quick_replies:
            body["reply_markup"] = {
                "inline_keyboard": [
                    [{"text": option[:64], "callback_data": f"quick_reply_{index}"}]
                    for index, option in enumerate(quick_replies)
                ]
            }

        url = self._url(credentials, "sendMessage")
        response = await request_with_retries(lambda: client.post(url, json=body))
        data = ensure_success(response, "telegram")
        if not data.get("ok", True):
            raise ExternalAPIError("telegram", data.get("error_code"), data.get("description"))
        result = data.get("result") or {}
        message_id = result.get("message_id")
        return DeliveryReceipt(external_message_id=str(message_id) if message_id is not None else None)
