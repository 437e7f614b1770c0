"""Embeddable web widget adapter.

The widget is public: requests are validated by schema and rate limited,
not signed. Replies are not pushed anywhere; the widget polls the ticket's
message list.
"""

from __future__ import annotations

from uuid import uuid4

from supportdesk.core.config import settings
from supportdesk.db.enums import ChannelPlatform
from supportdesk.schemas.inbound import CanonicalInboundMessage
from supportdesk.schemas.widget import WidgetMessageCreate
from supportdesk.services.channels.base import ChannelAdapter, DeliveryReceipt


class WidgetAdapter(ChannelAdapter):
    platform = ChannelPlatform.WIDGET
    signature_required = False

    def verify_signature(self, body, headers, *, url, secret, payload=None) -> bool:
        return True

    def normalize(self, event: dict) -> CanonicalInboundMessage | None:
        data = WidgetMessageCreate.model_validate(event)
        text = data.content.strip()
        if not text:
            return None
        email = data.customer_email or f"visitor-{data.visitor_id}@{settings.WIDGET_EMAIL_DOMAIN}"
        metadata = {"widgetVisitorId": data.visitor_id, "widgetSessionId": data.session_id}
        if data.page_url:
            metadata["widgetPageUrl"] = data.page_url
        return CanonicalInboundMessage(
            platform=self.platform,
            external_message_id=data.client_message_id or str(uuid4()),
            external_thread_key=data.session_id,
            sender_external_id=data.visitor_id,
            sender_display_name=data.customer_name or None,
            sender_email=email,
            body=text,
            raw_metadata=metadata,
            thread_metadata=metadata,
            identity_hints=[],
        )

    async def send_reply(self, client, credentials, target, text, quick_replies=None) -> DeliveryReceipt:
        return DeliveryReceipt()
