"""
API Routers package.
"""

from .chat import router as chat_router
from .conversations import router as conversations_router
from .messages import router as messages_router

__all__ = [
    "chat_router",
    "conversations_router",
    "messages_router"
]
