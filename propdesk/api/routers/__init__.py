"""API routers package."""

from propdesk.api.routers.challenges import router as challenges_router
from propdesk.api.routers.cron import router as cron_router
from propdesk.api.routers.health import router as health_router
from propdesk.api.routers.trades import router as trades_router

__all__ = [
    "challenges_router",
    "cron_router",
    "health_router",
    "trades_router",
]
