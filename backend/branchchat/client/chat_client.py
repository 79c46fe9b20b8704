"""
Async HTTP client for the BranchChat API.
"""

import aiohttp
import asyncio
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional

from ..errors import BranchChatError
from ..models.message import MessageRole
from ..schemas.conversation import ConversationResponse
from ..schemas.events import StreamEvent, TERMINAL_EVENTS
from ..schemas.message import GenerateRequest, MessageResponse
from .conversation_model import ConversationState
from .sse import EventStreamParser


logger = logging.getLogger(__name__)


class ChatClientError(BranchChatError):
    """Non-2xx response from the API."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class ChatClient:
    """
    Client for one BranchChat server.

    Keeps a `ConversationState` and at most one local stream reader per
    conversation; opening a stream aborts that conversation's previous reader
    first. Readers of other conversations are left alone.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        session: Optional[aiohttp.ClientSession] = None,
        stop_timeout: float = 10.0
    ):
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self.stop_timeout = stop_timeout
        self.states: Dict[str, ConversationState] = {}
        self._readers: Dict[str, asyncio.Task] = {}

    async def __aenter__(self) -> "ChatClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        for conversation_id in list(self._readers):
            await self._abort_reader(conversation_id)
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    def state(self, conversation_id: str) -> ConversationState:
        if conversation_id not in self.states:
            self.states[conversation_id] = ConversationState(conversation_id)
        return self.states[conversation_id]

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request_json(self, method: str, path: str, json: Any = None) -> Any:
        async with self.session.request(
            method,
            f"{self.base_url}{path}",
            json=json,
            timeout=aiohttp.ClientTimeout(total=30)
        ) as response:
            if response.status >= 400:
                error_text = await response.text()
                raise ChatClientError(
                    f"{method} {path} failed ({response.status}): {error_text[:200]}",
                    response.status
                )
            return await response.json()

    async def _stream(self, path: str, json: Any) -> AsyncIterator[bytes]:
        # Error responses are event streams too, so the body is always read
        async with self.session.post(
            f"{self.base_url}{path}",
            json=json,
            timeout=aiohttp.ClientTimeout(total=None, sock_read=300)
        ) as response:
            async for chunk in response.content.iter_any():
                yield chunk

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def list_conversations(self, skip: int = 0, limit: int = 50) -> List[ConversationResponse]:
        data = await self._request_json("GET", f"/api/conversations?skip={skip}&limit={limit}")
        return [ConversationResponse.model_validate(item) for item in data]

    async def create_conversation(
        self,
        title: Optional[str] = None,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None
    ) -> ConversationResponse:
        body = {"title": title, "model": model, "systemPrompt": system_prompt}
        data = await self._request_json(
            "POST", "/api/conversations", {k: v for k, v in body.items() if v is not None}
        )
        return ConversationResponse.model_validate(data)

    async def update_conversation(
        self,
        conversation_id: str,
        title: Optional[str] = None,
        model: Optional[str] = None
    ) -> ConversationResponse:
        body = {"title": title, "model": model}
        data = await self._request_json(
            "PATCH",
            f"/api/conversations/{conversation_id}",
            {k: v for k, v in body.items() if v is not None}
        )
        conversation = ConversationResponse.model_validate(data)
        if conversation_id in self.states:
            self.states[conversation_id].conversation = conversation
        return conversation

    async def rename(self, conversation_id: str, title: str) -> ConversationResponse:
        return await self.update_conversation(conversation_id, title=title)

    async def delete_conversation(self, conversation_id: str) -> None:
        await self._request_json("DELETE", f"/api/conversations/{conversation_id}")
        self.states.pop(conversation_id, None)

    async def delete_message(self, conversation_id: str, message_id: str) -> None:
        await self._request_json("DELETE", f"/api/messages/{message_id}")
        await self.load_conversation(conversation_id)

    async def load_conversation(self, conversation_id: str) -> ConversationState:
        """Fetch the full message list and merge it into the local state."""
        data = await self._request_json("GET", f"/api/conversations/{conversation_id}/messages")
        state = self.state(conversation_id)
        state.load(
            ConversationResponse.model_validate(data["conversation"]),
            [MessageResponse.model_validate(m) for m in data.get("messages", [])]
        )
        return state

    # ------------------------------------------------------------------
    # Generations
    # ------------------------------------------------------------------

    async def _abort_reader(self, conversation_id: str) -> None:
        reader = self._readers.pop(conversation_id, None)
        if reader is not None and not reader.done():
            reader.cancel()
            await asyncio.wait({reader})

    async def _read(self, request: GenerateRequest) -> List[StreamEvent]:
        state = self.state(request.conversation_id)
        parser = EventStreamParser()
        events: List[StreamEvent] = []
        payload = request.model_dump(mode="json", by_alias=True, exclude_none=True)

        try:
            stream = self._stream("/api/stream", payload)
            async with aclosing(stream):
                async for chunk in stream:
                    for event in parser.feed(chunk):
                        events.append(event)
                        state.apply(event, request)
                    if events and events[-1].event in TERMINAL_EVENTS:
                        break
            if events and events[-1].event == "end":
                await self.load_conversation(request.conversation_id)
        except asyncio.CancelledError:
            logger.debug("Stream reader for %s aborted", request.conversation_id)
            state.mark_stopped()
            return events

        if state.is_streaming:
            # Connection closed without a terminal event
            state.mark_stopped()
        return events

    async def open_stream(self, request: GenerateRequest) -> List[StreamEvent]:
        """
        Run a generation and apply its events to the conversation state.

        Returns the events received; if another stream is opened for the same
        conversation, or the stream is stopped, the events received until then.
        """
        conversation_id = request.conversation_id
        await self._abort_reader(conversation_id)
        reader = asyncio.create_task(self._read(request))
        self._readers[conversation_id] = reader
        try:
            return await reader
        finally:
            if self._readers.get(conversation_id) is reader:
                del self._readers[conversation_id]

    async def send_message(
        self,
        conversation_id: str,
        text: str,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None
    ) -> List[StreamEvent]:
        return await self.open_stream(GenerateRequest(
            conversation_id=conversation_id,
            user_message=text,
            model=model,
            system_prompt=system_prompt
        ))

    async def edit_message(
        self,
        conversation_id: str,
        message_id: str,
        text: str,
        model: Optional[str] = None
    ) -> List[StreamEvent]:
        """Send `text` as a new version of the user message `message_id`."""
        return await self.open_stream(GenerateRequest(
            conversation_id=conversation_id,
            user_message=text,
            model=model,
            user_message_parent_id=message_id,
            is_edited_prompt=True
        ))

    async def regenerate(
        self,
        conversation_id: str,
        user_message_id: str,
        model: Optional[str] = None
    ) -> List[StreamEvent]:
        """Ask for another answer to the user message `user_message_id`."""
        state = self.state(conversation_id)
        if user_message_id not in state.by_id:
            await self.load_conversation(conversation_id)
        user_message = state.by_id.get(user_message_id)
        variants = [
            m for m in state.messages
            if m.role == MessageRole.ASSISTANT and m.parent_id == user_message_id
        ]
        return await self.open_stream(GenerateRequest(
            conversation_id=conversation_id,
            user_message=user_message.content if user_message else "",
            model=model,
            parent_user_message_id=user_message_id,
            variant_index=len(variants),
            is_regeneration=True
        ))

    async def stop_stream(self, conversation_id: str) -> bool:
        """
        Stop the conversation's generation on the server.

        The local reader is given `stop_timeout` seconds to receive the
        final event before it is aborted.
        """
        data = await self._request_json("POST", "/api/stop", {"conversationId": conversation_id})
        reader = self._readers.get(conversation_id)
        if reader is not None and not reader.done():
            await asyncio.wait({reader}, timeout=self.stop_timeout)
            if not reader.done():
                await self._abort_reader(conversation_id)
        self.state(conversation_id).mark_stopped()
        return bool(data.get("stopped"))
