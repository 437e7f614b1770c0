"""Twilio adapters for SMS and WhatsApp."""

from __future__ import annotations

import base64
import hashlib
import hmac
from urllib.parse import parse_qsl

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

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


def compute_twilio_signature(auth_token: str, url: str, params: dict[str, str]) -> str:
    """URL followed by every POST param as key+value, sorted by key; HMAC-SHA1, base64."""
    message = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode(), message.encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


class TwilioAdapter(ChannelAdapter):
    address_prefix = ""

    def parse(self, body, headers) -> dict:
        return dict(parse_qsl(body.decode("utf-8"), keep_blank_values=True))

    def signing_secret(self, credentials: dict, connection_metadata: dict) -> str | None:
        return credentials.get("auth_token") or settings.TWILIO_AUTH_TOKEN or None

    def verify_signature(self, body, headers, *, url, secret, payload=None) -> bool:
        signature = get_header(headers, "X-Twilio-Signature")
        if not secret or not signature:
            return False
        params = payload if payload is not None else self.parse(body, headers)
        return constant_time_equals(compute_twilio_signature(secret, url, params), signature)

    def _strip(self, address: str) -> str:
        address = (address or "").strip()
        if self.address_prefix and address.startswith(self.address_prefix):
            address = address[len(self.address_prefix):]
        return address

    def account_key(self, payload: dict) -> str | None:
        return self._strip(payload.get("To", "")) or None

    def normalize(self, event: dict) -> CanonicalInboundMessage | None:
        number = self._strip(event.get("From", ""))
        text = (event.get("Body") or "").strip()
        message_sid = event.get("MessageSid") or event.get("SmsSid")
        if not number or not text or not message_sid:
            return None
        # Sandbox/status callbacks echo our own outbound messages
        if event.get("SmsStatus") not in (None, "", "received"):
            return None
        display_name = event.get("ProfileName") or number
        return CanonicalInboundMessage(
            platform=self.platform,
            external_message_id=message_sid,
            external_thread_key=number,
            sender_external_id=number,
            sender_display_name=display_name,
            sender_email=synthetic_email(number, self.platform.value),
            body=text,
            subject=f"{self.label} from {display_name}",
            raw_metadata={"twilioAccountSid": event.get("AccountSid")},
            thread_metadata={"twilioFrom": number, "twilioTo": self._strip(event.get("To", ""))},
            reply_target={"twilioMessageSid": message_sid},
            identity_hints=[number],
        )

    async def send_reply(
        self,
        client: httpx.AsyncClient,
        credentials: dict,
        target: ReplyTarget,
        text: str,
        quick_replies: list[str] | None = None,
    ) -> DeliveryReceipt:
        account_sid = credentials.get("account_sid")
        auth_token = credentials.get("auth_token")
        sender = target.keys.get("twilioTo") or credentials.get("from_number")
        recipient = target.keys.get("twilioFrom") or target.thread_key
        if not account_sid or not auth_token:
            raise ExternalAPIError("twilio", 401, "Missing account sid or auth token")
        if not sender or not recipient:
            raise ExternalAPIError("twilio", None, "Missing sender or recipient number")

        body = text
        if quick_replies:
            options = "\n".join(f"{index}. {option}" for index, option in enumerate(quick_replies, 1))
            body = f"{text}\n\n{options}"

        response = await request_with_retries(
            lambda: client.post(
                f"{TWILIO_API_BASE}/Accounts/{account_sid}/Messages.json",
                auth=(account_sid, auth_token),
                data={
                    "From": f"{self.address_prefix}{sender}",
                    "To": f"{self.address_prefix}{recipient}",
                    "Body": body,
                },
            )
        )
        data = ensure_success(response, "twilio")
        return DeliveryReceipt(external_message_id=data.get("sid"))


class SmsAdapter(TwilioAdapter):
    platform = ChannelPlatform.SMS
    label = "SMS"


class WhatsAppAdapter(TwilioAdapter):
    platform = ChannelPlatform.WHATSAPP
    label = "WhatsApp message"
    address_prefix = "whatsapp:"
