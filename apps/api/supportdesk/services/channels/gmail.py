"""Gmail adapter.

Gmail pushes only a mailbox change notice through Pub/Sub (email address +
history id). The webhook turns that into a CHANNEL_SYNC job; the sync pulls
the added messages with ``fetch_new_since``.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from email.message import EmailMessage
from email.utils import parseaddr
from urllib.parse import parse_qs, urlsplit

import httpx

from supportdesk.core.config import settings
from supportdesk.db.enums import ChannelPlatform
from supportdesk.schemas.inbound import CanonicalInboundMessage
from supportdesk.services.channels.base import (
    DeliveryReceipt,
    PollingAdapter,
    ReplyTarget,
    constant_time_equals,
)
from supportdesk.services.http_service import ExternalAPIError, ensure_success, request_with_retries

logger = logging.getLogger(__name__)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

_SKIP_LABELS = {"SENT", "DRAFT"}
MAX_MESSAGES_PER_SYNC = 100


def _b64url_decode(data: str) -> bytes:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode())


def _headers_map(payload: dict) -> dict[str, str]:
    return {h.get("name", "").lower(): h.get("value", "") for h in payload.get("headers") or []}


def _extract_plain_text(payload: dict) -> str:
    """Depth-first search for the first text/plain part."""
    if payload.get("mimeType") == "text/plain":
        data = (payload.get("body") or {}).get("data")
        if data:
            try:
                return _b64url_decode(data).decode("utf-8", errors="replace")
            except (binascii.Error, ValueError):
                return ""
    for part in payload.get("parts") or []:
        text = _extract_plain_text(part)
        if text:
            return text
    return ""


def _strip_quoted_reply(text: str) -> str:
    """Drop the quoted history mail clients append below a reply."""
    lines = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith(">"):
            continue
        if stripped.startswith("On ") and stripped.endswith("wrote:"):
            break
        lines.append(line)
    return "\n".join(lines).strip()


class GmailAdapter(PollingAdapter):
    platform = ChannelPlatform.GMAIL

    def signing_secret(self, credentials: dict, connection_metadata: dict) -> str | None:
        return credentials.get("pubsub_token") or settings.GMAIL_PUBSUB_VERIFICATION_TOKEN or None

    def verify_signature(self, body, headers, *, url, secret, payload=None) -> bool:
        # Pub/Sub push subscriptions carry a shared token in the endpoint URL
        token = parse_qs(urlsplit(url).query).get("token", [""])[0]
        return constant_time_equals(secret or "", token)

    def _notification(self, payload: dict) -> dict:
        data = (payload.get("message") or {}).get("data")
        if not data:
            return {}
        try:
            decoded = json.loads(_b64url_decode(data))
        except (binascii.Error, ValueError):
            return {}
        return decoded if isinstance(decoded, dict) else {}

    def account_key(self, payload: dict) -> str | None:
        email = self._notification(payload).get("emailAddress")
        return email.lower() if email else None

    def extract_events(self, payload: dict) -> list[dict]:
        return []

    def sync_marker(self, payload: dict) -> str | None:
        history_id = self._notification(payload).get("historyId")
        return str(history_id) if history_id else None

    def normalize(self, event: dict) -> CanonicalInboundMessage | None:
        """Normalize a ``messages.get?format=full`` resource."""
        labels = set(event.get("labelIds") or [])
        if labels & _SKIP_LABELS:
            return None
        payload = event.get("payload") or {}
        headers = _headers_map(payload)
        name, address = parseaddr(headers.get("from", ""))
        if not address:
            return None
        own_address = (event.get("_mailbox") or "").lower()
        if own_address and address.lower() == own_address:
            return None

        body = _strip_quoted_reply(_extract_plain_text(payload)) or (event.get("snippet") or "").strip()
        if not body:
            return None

        thread_id = event.get("threadId") or event["id"]
        message_id_header = headers.get("message-id", "")
        references = " ".join(part for part in [headers.get("references", ""), message_id_header] if part)
        return CanonicalInboundMessage(
            platform=self.platform,
            external_message_id=event["id"],
            external_thread_key=thread_id,
            sender_external_id=address.lower(),
            sender_display_name=name or None,
            sender_email=address,
            body=body,
            subject=headers.get("subject") or None,
            raw_metadata={"gmailLabelIds": sorted(labels)},
            thread_metadata={"gmailThreadId": thread_id},
            reply_target={
                "gmailThreadId": thread_id,
                "emailMessageId": message_id_header,
                "emailReferences": references,
            },
            identity_hints=[address.lower()],
        )

    async def _get(self, client: httpx.AsyncClient, token: str, path: str, params: dict | None = None) -> dict:
        response = await request_with_retries(
            lambda: client.get(
                f"{GMAIL_API_BASE}{path}",
                headers={"Authorization": f"Bearer {token}"},
                params=params,
            )
        )
        return ensure_success(response, "gmail")

    async def fetch_new_since(self, client, credentials, cursor, connection_metadata):
        token = credentials.get("access_token")
        if not token:
            raise ExternalAPIError("gmail", 401, "Missing access token")

        if not cursor:
            profile = await self._get(client, token, "/profile")
            logger.info("Gmail sync cursor initialized from mailbox profile")
            return [], str(profile.get("historyId") or "")

        message_ids: list[str] = []
        next_cursor = cursor
        page_token = None
        truncated = False
        while True:
            params = {
                "startHistoryId": cursor,
                "historyTypes": "messageAdded",
                "labelId": "INBOX",
            }
            if page_token:
                params["pageToken"] = page_token
            try:
                data = await self._get(client, token, "/history", params)
            except ExternalAPIError as exc:
                if exc.status_code != 404:
                    raise
                # History ids expire after about a week; restart from now
                profile = await self._get(client, token, "/profile")
                logger.warning("Gmail history cursor expired, resetting")
                return [], str(profile.get("historyId") or "")
            for record in data.get("history") or []:
                for added in record.get("messagesAdded") or []:
                    message_id = (added.get("message") or {}).get("id")
                    if message_id and message_id not in message_ids:
                        message_ids.append(message_id)
                if len(message_ids) >= MAX_MESSAGES_PER_SYNC and record.get("id"):
                    # Resume after the last record taken, not the mailbox head
                    next_cursor = str(record["id"])
                    truncated = True
                    break
            if truncated:
                logger.info(
                    "Gmail sync capped at %s messages, resuming from history %s",
                    len(message_ids),
                    next_cursor,
                )
                break
            next_cursor = str(data.get("historyId") or next_cursor)
            page_token = data.get("nextPageToken")
            if not page_token:
                break

        mailbox = connection_metadata.get("email") or ""
        messages = []
        for message_id in message_ids:
            resource = await self._get(client, token, f"/messages/{message_id}", {"format": "full"})
            normalized = self.normalize({**resource, "_mailbox": mailbox})
            if normalized is not None:
                messages.append(normalized)
        return messages, next_cursor

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
            raise ExternalAPIError("gmail", 401, "Missing access token")

        subject = target.subject or "Your support request"
        if not subject.lower().startswith("re:"):
            subject = f"Re: {subject}"
        body = text
        if quick_replies:
            options = "\n".join(f"{index}. {option}" for index, option in enumerate(quick_replies, 1))
            body = f"{text}\n\nReply with one of:\n{options}"

        message = EmailMessage()
        message["To"] = target.customer_email
        message["Subject"] = subject
        in_reply_to = target.keys.get("emailMessageId")
        if in_reply_to:
            message["In-Reply-To"] = in_reply_to
            message["References"] = target.keys.get("emailReferences") or in_reply_to
        message.set_content(body)

        request_body: dict = {"raw": base64.urlsafe_b64encode(message.as_bytes()).decode().rstrip("=")}
        thread_id = target.keys.get("gmailThreadId")
        if thread_id:
            request_body["threadId"] = thread_id

        response = await request_with_retries(
            lambda: client.post(
                f"{GMAIL_API_BASE}/messages/send",
                headers={"Authorization": f"Bearer {token}"},
                json=request_body,
            )
        )
        data = ensure_success(response, "gmail")
        return DeliveryReceipt(
            external_message_id=data.get("id"),
            metadata={"emailLastMessageId": data.get("id")},
        )

    async def refresh_credentials(self, client, credentials):
        refresh_token = credentials.get("refresh_token")
        if not refresh_token or not settings.GOOGLE_CLIENT_ID:
            return None
        response = await request_with_retries(
            lambda: client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": settings.GOOGLE_CLIENT_ID,
                    "client_secret": settings.GOOGLE_CLIENT_SECRET,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        )
        data = ensure_success(response, "google_oauth")
        if not data.get("access_token"):
            return None
        return {
            **credentials,
            "access_token": data["access_token"],
            "expires_in": data.get("expires_in"),
        }
