"""
Conversation management routes.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from typing import List, Optional

from ..dependencies import get_generation_service, get_store
from ..errors import NotFoundError
from ..schemas.conversation import (
    ConversationCreate,
    ConversationUpdate,
    ConversationResponse,
    ConversationWithMessages
)
from ..schemas.message import MessageResponse
from ..services.generation_service import GenerationService
from ..services.message_store import MessageStore


router = APIRouter(prefix="/api/conversations", tags=["Conversations"])


async def _conversation_with_messages(conversation_id: str, store: MessageStore) -> ConversationWithMessages:
    conversation = await store.get_conversation(conversation_id)
    if not conversation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found"
        )

    messages = await store.list_messages(conversation.id)
    return ConversationWithMessages(
        conversation=ConversationResponse.model_validate(conversation),
        messages=[MessageResponse.model_validate(msg) for msg in messages]
    )


@router.get("", response_model=List[ConversationResponse])
async def list_conversations(
    skip: int = 0,
    limit: int = 50,
    store: MessageStore = Depends(get_store)
):
    """List conversations, most recently updated first."""
    return await store.list_conversations(skip=skip, limit=limit)


@router.post("", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    conversation_data: Optional[ConversationCreate] = None,
    store: MessageStore = Depends(get_store)
):
    """Create a new conversation, optionally rooted at a system prompt."""
    conversation_data = conversation_data or ConversationCreate()
    return await store.create_conversation(
        title=conversation_data.title,
        model=conversation_data.model,
        system_prompt=conversation_data.system_prompt
    )


@router.get("/{conversation_id}", response_model=ConversationWithMessages)
async def get_conversation(
    conversation_id: str,
    store: MessageStore = Depends(get_store)
):
    """Get a conversation with all messages."""
    return await _conversation_with_messages(conversation_id, store)


@router.get("/{conversation_id}/messages", response_model=ConversationWithMessages)
async def get_conversation_messages(
    conversation_id: str,
    store: MessageStore = Depends(get_store)
):
    """Full flat message list in creation order; clients rebuild turns from it."""
    return await _conversation_with_messages(conversation_id, store)


@router.patch("/{conversation_id}", response_model=ConversationResponse)
async def update_conversation(
    conversation_id: str,
    updates: ConversationUpdate,
    store: MessageStore = Depends(get_store)
):
    """Rename a conversation or change its model."""
    try:
        return await store.update_conversation(
            conversation_id,
            title=updates.title,
            model=updates.model
        )
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found"
        )


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    store: MessageStore = Depends(get_store),
    service: GenerationService = Depends(get_generation_service)
):
    """Delete a conversation and its messages, stopping any active generation."""
    service.stop(conversation_id)
    if not await store.delete_conversation(conversation_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found"
        )
    return {"ok": True}
