"""
Conversation-related Pydantic schemas.
"""

from pydantic import Field
from typing import Optional, List
from datetime import datetime

from .message import WireModel, MessageResponse


class ConversationCreate(WireModel):
    """Schema for creating a conversation."""
    title: Optional[str] = Field(None, max_length=200)
    model: Optional[str] = None
    system_prompt: Optional[str] = None


class ConversationUpdate(WireModel):
    """Schema for updating a conversation."""
    title: Optional[str] = Field(None, max_length=200)
    model: Optional[str] = None


class ConversationResponse(WireModel):
    """Conversation response schema."""
    conversation_id: str
    title: Optional[str] = None
    model: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class ConversationWithMessages(WireModel):
    """Conversation with full message history."""
    conversation: ConversationResponse
    messages: List[MessageResponse] = []
