"""Routers package."""

from .chat import router as chat_router
from .expenses import router as expenses_router
from .reference import categories_router, statuses_router, users_router

__all__ = [
    "categories_router",
    "chat_router",
    "expenses_router",
    "statuses_router",
    "users_router",
]
