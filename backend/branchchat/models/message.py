"""
Message database model.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON, Enum, Index
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum
import uuid

from ..database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(str, enum.Enum):
    SYSTEM = "SYSTEM"
    USER = "USER"
    ASSISTANT = "ASSISTANT"


class MessageStatus(str, enum.Enum):
    STREAMING = "STREAMING"
    COMPLETE = "COMPLETE"
    INTERRUPTED = "INTERRUPTED"
    ERROR = "ERROR"


class Message(Base):
    """Chat message model. Messages form a tree through `parent_id`."""

    __tablename__ = "messages"

    __table_args__ = (
        Index('ix_messages_conversation_created', 'conversation_id', 'created_at'),
    )

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(String(36), unique=True, nullable=False, index=True, default=lambda: str(uuid.uuid4()))
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)

    # Message content
    role = Column(Enum(MessageRole, native_enum=False, length=20), nullable=False)
    content = Column(Text, nullable=False, default="")
    status = Column(Enum(MessageStatus, native_enum=False, length=20), nullable=False, default=MessageStatus.COMPLETE)

    # Branching: USER -> previous non-user message or prior version, ASSISTANT -> USER it answers
    parent_id = Column(String(36), nullable=True, index=True)
    variant_index = Column(Integer, nullable=False, default=0)

    # Generation metadata
    model = Column(String(100), nullable=True)
    prompt_tokens = Column(Integer, nullable=True)
    completion_tokens = Column(Integer, nullable=True)
    finish_reason = Column(String(50), nullable=True)

    # Visualization add-on payloads
    structured_data = Column(JSON, nullable=True)
    visualization_config = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")
