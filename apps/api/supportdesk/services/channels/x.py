"""X (Twitter) Account Activity adapter: direct messages and mentions."""

from __future__ import annotations

import base64
import hashlib
import hmac

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

X_API_BASE = "https://api.twitter.com/2"
TWEET_MAX_LENGTH = 280


def x_signature(secret: str, message: bytes) -> str:
    digest = hmac.new(secret.encode(), message, hashlib.sha256).digest()
    return "sha256=" + base64.b64encode(digest).decode()


class XAdapter(ChannelAdapter):
    platform = ChannelPlatform.X

    def signing_secret(self, credentials: dict, connection_metadata: dict) -> str | None:
        return credentials.get("consumer_secret") or settings.X_CONSUMER_SECRET or None

    def verify_signature(self, body, headers, *, url, secret, payload=None) -> bool:
        signature = get_header(headers, "X-Twitter-Webhooks-Signature")
        if not secret or not signature:
            return False
        return constant_time_equals(x_signature(secret, body), signature)

    def verify_challenge(self, query, secret):
        crc_token = query.get("crc_token")
        if not crc_token or not secret:
            return None
        return {"response_token": x_signature(secret, crc_token.encode())}

    def account_key(self, payload: dict) -> str | None:
        return payload.get("for_user_id")

    def extract_events(self, payload: dict) -> list[dict]:
        account_id = payload.get("for_user_id")
        users = payload.get("users") or {}
        events = []
        for dm in payload.get("direct_message_events") or []:
            if dm.get("type") == "message_create":
                events.append({"kind": "dm", "account_id": account_id, "users": users, **dm})
        for tweet in payload.get("tweet_create_events") or []:
            events.append({"kind": "mention", "account_id": account_id, **tweet})
        return events

    def normalize(self, event: dict) -> CanonicalInboundMessage | None:
        if event.get("kind") == "mention":
            return self._normalize_mention(event)
        create = event.get("message_create") or {}
        sender_id = str(create.get("sender_id", ""))
        text = ((create.get("message_data") or {}).get("text") or "").strip()
        if not sender_id or sender_id == event.get("account_id") or not text or not event.get("id"):
            return None
        profile = (event.get("users") or {}).get(sender_id) or {}
        screen_name = profile.get("screen_name")
        hints = [sender_id] + ([screen_name.lower()] if screen_name else [])
        return CanonicalInboundMessage(
            platform=self.platform,
            external_message_id=str(event["id"]),
            external_thread_key=f"dm:{sender_id}",
            sender_external_id=sender_id,
            sender_display_name=profile.get("name") or (f"@{screen_name}" if screen_name else f"X User {sender_id}"),
            sender_email=synthetic_email(sender_id, "twitter"),
            body=text,
            subject="X direct message",
            raw_metadata={"xAccountId": event.get("account_id")},
            thread_metadata={"xKind": "dm", "xParticipantId": sender_id},
            reply_target={"xMessageId": str(event["id"])},
            identity_hints=hints,
        )

    def _normalize_mention(self, tweet: dict) -> CanonicalInboundMessage | None:
        user = tweet.get("user") or {}
        sender_id = str(user.get("id_str") or user.get("id") or "")
        text = (tweet.get("text") or "").strip()
        tweet_id = tweet.get("id_str") or tweet.get("id")
        # The account's own tweets also arrive as tweet_create_events
        if not sender_id or sender_id == tweet.get("account_id") or not text or not tweet_id:
            return None
        screen_name = user.get("screen_name")
        hints = [sender_id] + ([screen_name.lower()] if screen_name else [])
        return CanonicalInboundMessage(
            platform=self.platform,
            external_message_id=str(tweet_id),
            external_thread_key=f"mention:{sender_id}",
            sender_external_id=sender_id,
            sender_display_name=user.get("name") or (f"@{screen_name}" if screen_name else f"X User {sender_id}"),
            sender_email=synthetic_email(sender_id, "twitter"),
            body=text,
            subject="X mention",
            raw_metadata={"xAccountId": tweet.get("account_id")},
            thread_metadata={"xKind": "mention", "xScreenName": screen_name},
            reply_target={"xTweetId": str(tweet_id)},
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
            raise ExternalAPIError("x", 401, "Missing access token")
        headers = {"Authorization": f"Bearer {token}"}

        if target.keys.get("xKind") == "mention":
            tweet_id = target.keys.get("xTweetId")
            if not tweet_id:
                raise ExternalAPIError("x", None, "Missing tweet id")
            screen_name = target.keys.get("xScreenName")
            status = f"@{screen_name} {text}" if screen_name else text
            response = await request_with_retries(
                lambda: client.post(
                    f"{X_API_BASE}/tweets",
                    headers=headers,
                    json={
                        "text": status[:TWEET_MAX_LENGTH],
                        "reply": {"in_reply_to_tweet_id": tweet_id},
                    },
                )
            )
            data = ensure_success(response, "x")
            return DeliveryReceipt(external_message_id=(data.get("data") or {}).get("id"))

        participant = target.keys.get("xParticipantId")
        if not participant:
            raise ExternalAPIError("x", None, "Missing DM participant")
        body = text
        if quick_replies:
            options = "\n".join(f"{index}. {option}" for index, option in enumerate(quick_replies, 1))
            body = f"{text}\n\n{options}"
        response = await request_with_retries(
            lambda: client.post(
                f"{X_API_BASE}/dm_conversations/with/{participant}/messages",
                headers=headers,
                json={"text": body},
            )
        )
        data = ensure_success(response, "x")
        return DeliveryReceipt(external_message_id=(data.get("data") or {}).get("dm_event_id"))
