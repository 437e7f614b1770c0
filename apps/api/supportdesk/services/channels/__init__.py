"""Channel adapters (one per messaging platform)."""

from supportdesk.services.channels.base import (
    ChannelAdapter,
    DeliveryReceipt,
    PollingAdapter,
    ReplyTarget,
)
from supportdesk.services.channels.registry import get_adapter, is_polling

__all__ = [
    "ChannelAdapter",
    "DeliveryReceipt",
    "PollingAdapter",
    "ReplyTarget",
    "get_adapter",
    "is_polling",
]
