"""
Message routes.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from ..dependencies import get_store
from ..services.message_store import MessageStore


router = APIRouter(prefix="/api/messages", tags=["Messages"])


@router.delete("/{message_id}")
async def delete_message(
    message_id: str,
    store: MessageStore = Depends(get_store)
):
    """Delete a single message."""
    if not await store.delete_message(message_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Message not found"
        )
    return {"ok": True}
