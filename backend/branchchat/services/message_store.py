"""
Persistence for conversations and messages.

Every operation runs in its own short session so that a generation task can
be cancelled mid-write without leaving a shared session in a broken state.
"""

from sqlalchemy import select, update, delete, desc, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from typing import Any, List, Optional

from ..config import settings
from ..errors import NotFoundError, PersistenceCheckpointFailure
from ..models.conversation import Conversation
from ..models.message import Message, MessageRole, MessageStatus, utcnow


class MessageStore:
    """Service for conversation and message persistence."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def create_conversation(
        self,
        title: Optional[str] = None,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None
    ) -> Conversation:
        """Create a conversation, optionally rooted at a SYSTEM message."""
        async with self.session_factory() as session:
            conversation = Conversation(
                title=title or settings.DEFAULT_TITLE,
                model=model or settings.DEFAULT_MODEL
            )
            session.add(conversation)
            await session.flush()

            if system_prompt:
                session.add(Message(
                    conversation_id=conversation.id,
                    role=MessageRole.SYSTEM,
                    content=system_prompt,
                    status=MessageStatus.COMPLETE
                ))

            await session.commit()
            await session.refresh(conversation)
            return conversation

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Conversation).filter(Conversation.conversation_id == conversation_id)
            )
            return result.scalar_one_or_none()

    async def require_conversation(self, conversation_id: str) -> Conversation:
        conversation = await self.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        return conversation

    async def list_conversations(self, skip: int = 0, limit: int = 50) -> List[Conversation]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Conversation)
                .order_by(desc(Conversation.updated_at), desc(Conversation.id))
                .offset(skip)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def update_conversation(self, conversation_id: str, **fields: Any) -> Conversation:
        """Update the given conversation columns; None values are ignored."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Conversation).filter(Conversation.conversation_id == conversation_id)
            )
            conversation = result.scalar_one_or_none()
            if conversation is None:
                raise NotFoundError("Conversation not found")

            for name, value in fields.items():
                if value is not None:
                    setattr(conversation, name, value)
            conversation.updated_at = utcnow()

            await session.commit()
            await session.refresh(conversation)
            return conversation

    async def touch_conversation(self, conversation_pk: int) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Conversation)
                .where(Conversation.id == conversation_pk)
                .values(updated_at=utcnow())
            )
            await session.commit()

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and all of its messages."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Conversation).filter(Conversation.conversation_id == conversation_id)
            )
            conversation = result.scalar_one_or_none()
            if conversation is None:
                return False

            await session.execute(delete(Message).where(Message.conversation_id == conversation.id))
            await session.delete(conversation)
            await session.commit()
            return True

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def list_messages(
        self,
        conversation_pk: int,
        role: Optional[MessageRole] = None
    ) -> List[Message]:
        """All messages of a conversation in creation order."""
        async with self.session_factory() as session:
            query = select(Message).filter(Message.conversation_id == conversation_pk)
            if role is not None:
                query = query.filter(Message.role == role)
            result = await session.execute(query.order_by(Message.created_at, Message.id))
            return list(result.scalars().all())

    async def get_message(self, message_id: str) -> Optional[Message]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Message).filter(Message.message_id == message_id)
            )
            return result.scalar_one_or_none()

    async def create_message(self, conversation_pk: int, **fields: Any) -> Message:
        async with self.session_factory() as session:
            message = Message(conversation_id=conversation_pk, **fields)
            session.add(message)
            await session.commit()
            await session.refresh(message)
            return message

    async def update_message(self, message_id: str, **fields: Any) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Message).where(Message.message_id == message_id).values(**fields)
            )
            await session.commit()

    async def checkpoint(self, message_id: str, content: str, completion_tokens: int) -> None:
        """Persist in-progress content of a STREAMING message."""
        try:
            async with self.session_factory() as session:
                await session.execute(
                    update(Message)
                    .where(
                        Message.message_id == message_id,
                        Message.status == MessageStatus.STREAMING
                    )
                    .values(content=content, completion_tokens=completion_tokens)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceCheckpointFailure(str(e)) from e

    async def delete_message(self, message_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(Message).where(Message.message_id == message_id)
            )
            await session.commit()
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # Branch linkage
    # ------------------------------------------------------------------

    async def latest_non_user_message(self, conversation_pk: int) -> Optional[Message]:
        """Most recent SYSTEM or ASSISTANT message, the default parent of a new USER message."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Message)
                .filter(
                    Message.conversation_id == conversation_pk,
                    Message.role != MessageRole.USER
                )
                .order_by(desc(Message.created_at), desc(Message.id))
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def next_variant_index(self, conversation_pk: int, parent_id: str) -> int:
        """Next free variant index among the assistant answers to `parent_id`."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.max(Message.variant_index)).filter(
                    Message.conversation_id == conversation_pk,
                    Message.role == MessageRole.ASSISTANT,
                    Message.parent_id == parent_id
                )
            )
            current = result.scalar_one_or_none()
            return 0 if current is None else current + 1

    async def count_assistant_messages(self, conversation_pk: int) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(Message.id)).filter(
                    Message.conversation_id == conversation_pk,
                    Message.role == MessageRole.ASSISTANT
                )
            )
            return result.scalar_one()

    async def interrupt_streaming_children(self, conversation_pk: int, parent_id: str, reason: str) -> int:
        """Force STREAMING assistant answers of `parent_id` into INTERRUPTED."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(Message)
                .where(
                    Message.conversation_id == conversation_pk,
                    Message.parent_id == parent_id,
                    Message.status == MessageStatus.STREAMING
                )
                .values(status=MessageStatus.INTERRUPTED, finish_reason=reason)
            )
            await session.commit()
            return result.rowcount
