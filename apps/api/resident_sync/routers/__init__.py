"""API routers."""

from resident_sync.routers.admin import router as admin_router
from resident_sync.routers.health import router as health_router
from resident_sync.routers.webhooks import router as webhooks_router

__all__ = [
    "admin_router",
    "health_router",
    "webhooks_router",
]
