"""
Conversation database model.
"""

from sqlalchemy import Column, Integer, String, DateTime, Index
from sqlalchemy.orm import relationship
import uuid

from ..database import Base
from .message import utcnow


class Conversation(Base):
    """Conversation model. `conversation_id` is the client-visible identifier."""

    __tablename__ = "conversations"

    # Conversation listing is ordered by recency
    __table_args__ = (
        Index('ix_conversations_updated', 'updated_at'),
    )

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(String(36), unique=True, nullable=False, index=True, default=lambda: str(uuid.uuid4()))

    # Conversation metadata
    title = Column(String(200), nullable=True, default="New Chat")
    model = Column(String(100), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True
    )
