"""
Python client for the BranchChat API.
"""

from .chat_client import ChatClient, ChatClientError
from .conversation_model import ConversationState, Turn
from .sse import EventStreamParser

__all__ = ["ChatClient", "ChatClientError", "ConversationState", "Turn", "EventStreamParser"]
