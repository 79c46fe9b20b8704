"""
Chat routes with streaming support.
"""

from fastapi import APIRouter, Body, Depends, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import ValidationError
from typing import Any, Dict
import logging

from ..catalog import MODELS
from ..config import settings
from ..dependencies import get_generation_service
from ..errors import BranchChatError
from ..schemas.events import ErrorEvent, encode_sse
from ..schemas.message import GenerateRequest, StopRequest
from ..services.generation_service import GenerationService


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no"
}


def _error_response(message: str, status_code: int) -> Response:
    """A complete event stream made of a single error frame."""
    return Response(
        content=encode_sse(ErrorEvent(message=message)),
        status_code=status_code,
        media_type="text/event-stream"
    )


async def _open_stream(chat_request: GenerateRequest, service: GenerationService) -> Response:
    try:
        generation = await service.start(chat_request)
    except BranchChatError as e:
        logger.warning("Generation rejected for %s: %s", chat_request.conversation_id, e.message)
        return _error_response(e.message, e.status_code)
    except Exception as e:
        logger.exception("Generation setup failed for %s", chat_request.conversation_id)
        return _error_response(str(e) or "Server error", status.HTTP_500_INTERNAL_SERVER_ERROR)

    async def generate():
        async for event in generation.events():
            yield encode_sse(event)

    return StreamingResponse(generate(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/models")
async def list_models():
    """List the chat models this server can budget for."""
    return {
        "default": settings.DEFAULT_MODEL,
        "models": [
            {
                "id": m.id,
                "label": m.label,
                "maxContextTokens": m.max_context_tokens,
                "maxCompletionTokens": m.max_completion_tokens
            }
            for m in MODELS
        ]
    }


@router.post("/stream")
async def stream_generation(
    chat_request: GenerateRequest,
    service: GenerationService = Depends(get_generation_service)
):
    """Open a generation and stream its events."""
    return await _open_stream(chat_request, service)


@router.post("/chat/{chat_id}/stream")
async def stream_chat_generation(
    chat_id: str,
    body: Dict[str, Any] = Body(default_factory=dict),
    service: GenerationService = Depends(get_generation_service)
):
    """Same as /api/stream with the conversation id taken from the path."""
    try:
        chat_request = GenerateRequest.model_validate({**body, "conversationId": chat_id})
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False))
    return await _open_stream(chat_request, service)


@router.post("/stop")
async def stop_generation(
    stop_request: StopRequest,
    service: GenerationService = Depends(get_generation_service)
):
    """Cancel the active generation of a conversation, if any."""
    if not stop_request.conversation_id:
        return JSONResponse({"ok": False}, status_code=status.HTTP_400_BAD_REQUEST)
    stopped = service.stop(stop_request.conversation_id)
    return {"ok": True, "stopped": stopped}
