"""Platform → adapter lookup."""

from __future__ import annotations

from supportdesk.db.enums import ChannelPlatform
from supportdesk.services.channels.base import ChannelAdapter, PollingAdapter
from supportdesk.services.channels.discord import DiscordAdapter
from supportdesk.services.channels.gmail import GmailAdapter
from supportdesk.services.channels.instagram import InstagramAdapter
from supportdesk.services.channels.slack import SlackAdapter
from supportdesk.services.channels.teams import TeamsAdapter
from supportdesk.services.channels.telegram import TelegramAdapter
from supportdesk.services.channels.twilio import SmsAdapter, WhatsAppAdapter
from supportdesk.services.channels.widget import WidgetAdapter
from supportdesk.services.channels.x import XAdapter

_ADAPTERS: dict[ChannelPlatform, ChannelAdapter] = {
    adapter.platform: adapter
    for adapter in (
        SlackAdapter(),
        GmailAdapter(),
        DiscordAdapter(),
        TelegramAdapter(),
        SmsAdapter(),
        WhatsAppAdapter(),
        InstagramAdapter(),
        XAdapter(),
        TeamsAdapter(),
        WidgetAdapter(),
    )
}


def get_adapter(platform: ChannelPlatform | str) -> ChannelAdapter:
    """Return the adapter for a platform; KeyError when none is registered."""
    try:
        key = ChannelPlatform(platform)
    except ValueError:
        raise KeyError(f"No adapter registered for platform: {platform}")
    return _ADAPTERS[key]


def is_polling(platform: ChannelPlatform | str) -> bool:
    try:
        return isinstance(get_adapter(platform), PollingAdapter)
    except KeyError:
        return False
