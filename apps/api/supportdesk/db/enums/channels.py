"""Channel-related enums."""

from enum import Enum


class ChannelPlatform(str, Enum):
    """Inbound/outbound messaging platforms."""

    SLACK = "slack"
    GMAIL = "gmail"
    DISCORD = "discord"
    TELEGRAM = "telegram"
    SMS = "sms"
    WHATSAPP = "whatsapp"
    INSTAGRAM = "instagram"
    X = "x"
    TEAMS = "teams"
    WIDGET = "widget"


class TrackerProvider(str, Enum):
    """External project trackers for recurring-issue tasks."""

    CLICKUP = "clickup"
    ASANA = "asana"
