"""API routers."""

from supportdesk.routers.internal import router as internal_router
from supportdesk.routers.webhooks import router as webhooks_router
from supportdesk.routers.widget import router as widget_router

__all__ = [
    "internal_router",
    "webhooks_router",
    "widget_router",
]
