from cardkeeper.api.cards import router as cards_router
from cardkeeper.api.collections import router as collections_router
from cardkeeper.api.health import router as health_router
from cardkeeper.api.notifications import router as notifications_router

__all__ = [
    "cards_router",
    "collections_router",
    "health_router",
    "notifications_router",
]
