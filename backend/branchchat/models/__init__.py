"""
Database models package.
"""

from .message import Message, MessageRole, MessageStatus
from .conversation import Conversation

__all__ = ["Conversation", "Message", "MessageRole", "MessageStatus"]
