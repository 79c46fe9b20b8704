"""
Message-related Pydantic schemas.
"""

from pydantic import BaseModel, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, Any
from datetime import datetime

from ..models.message import MessageRole, MessageStatus


class WireModel(BaseModel):
    """Base schema: snake_case in Python, camelCase on the wire."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class MessageResponse(WireModel):
    """Message response schema."""
    message_id: str
    role: MessageRole
    content: str = ""
    status: MessageStatus
    parent_id: Optional[str] = None
    variant_index: Optional[int] = 0
    model: Optional[str] = None
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    finish_reason: Optional[str] = None
    structured_data: Optional[Any] = None
    visualization_config: Optional[Any] = None
    created_at: datetime


class GenerateRequest(WireModel):
    """
    Schema for opening a generation.

    A new message is sent with `user_message` only; an edit additionally
    carries `user_message_parent_id` (the version being edited); a
    regeneration sets `is_regeneration` and `parent_user_message_id`.
    The legacy `parent_id` field is mapped onto whichever of the two parent
    fields applies.
    """
    conversation_id: str
    user_message: str
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    parent_user_message_id: Optional[str] = None
    user_message_parent_id: Optional[str] = None
    variant_index: int = 0
    is_regeneration: bool = False
    is_edited_prompt: bool = False
    parent_id: Optional[str] = None  # deprecated

    @model_validator(mode="after")
    def resolve_parents(self) -> "GenerateRequest":
        if self.parent_id is not None:
            if self.is_regeneration:
                self.parent_user_message_id = self.parent_user_message_id or self.parent_id
            else:
                self.user_message_parent_id = self.user_message_parent_id or self.parent_id
            self.parent_id = None

        if self.is_regeneration:
            if not self.parent_user_message_id:
                raise ValueError("parentUserMessageId is required for regeneration")
        elif not self.user_message.strip():
            raise ValueError("userMessage must not be empty")

        if self.is_edited_prompt and not self.user_message_parent_id:
            raise ValueError("userMessageParentId is required when editing a prompt")
        return self

    @property
    def is_edit(self) -> bool:
        return not self.is_regeneration and self.user_message_parent_id is not None


class StopRequest(WireModel):
    """Out-of-band cancel request."""
    conversation_id: Optional[str] = None
