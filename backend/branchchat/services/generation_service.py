"""
Generation orchestrator.

Resolves a user turn (new message, edit, or regeneration) into a branch of
the message tree, persists a STREAMING assistant placeholder, and runs the
completion in a background task that feeds a queue of typed events. The
HTTP response drains that queue; if the client goes away the task keeps
running and keeps checkpointing, so a reconnecting client can reload the
partial answer.
"""

from sqlalchemy.exc import SQLAlchemyError
from contextlib import aclosing
from typing import AsyncGenerator, Dict, List, Optional
import asyncio
import enum
import logging
import uuid

from ..catalog import get_model_info
from ..config import settings
from ..errors import (
    ConfigurationError,
    InvalidRequestError,
    NotFoundError,
    PersistenceCheckpointFailure,
    UpstreamFailure,
)
from ..models.conversation import Conversation
from ..models.message import Message, MessageRole, MessageStatus
from ..schemas.events import (
    EndEvent,
    ErrorEvent,
    FinishEvent,
    StartEvent,
    StatusEvent,
    StreamEvent,
    TitleEvent,
    TokenEvent,
    TERMINAL_EVENTS,
)
from ..schemas.message import GenerateRequest
from .llm_service import LLMService
from .message_store import MessageStore
from .stream_registry import GenerationHandle, StreamRegistry, USER_CANCELLED, USER_EDITED_PROMPT
from .token_budget import build_prompt
from .visualization_service import VisualizationPipeline


logger = logging.getLogger(__name__)


class GenerationState(str, enum.Enum):
    RESOLVING_TURN = "RESOLVING_TURN"
    STREAMING = "STREAMING"
    COMPLETE = "COMPLETE"
    INTERRUPTED = "INTERRUPTED"
    ERROR = "ERROR"


class Generation:
    """One in-flight generation and the queue of events it produces."""

    def __init__(
        self,
        conversation: Conversation,
        request: GenerateRequest,
        user_message_id: str,
        user_text: str,
        assistant_message_id: str,
        model: str,
        prompt: List[Dict[str, str]],
        max_tokens: int,
        generate_title: bool
    ):
        self.conversation = conversation
        self.request = request
        self.user_message_id = user_message_id
        self.user_text = user_text
        self.assistant_message_id = assistant_message_id
        self.model = model
        self.prompt = prompt
        self.max_tokens = max_tokens
        self.generate_title = generate_title

        self.state = GenerationState.RESOLVING_TURN
        self.content = ""
        self.completion_tokens = 0
        self.finish_reason: Optional[str] = None
        self.handle = GenerationHandle(request.conversation_id, assistant_message_id)
        self._queue: "asyncio.Queue[StreamEvent]" = asyncio.Queue()

    @property
    def conversation_id(self) -> str:
        return self.request.conversation_id

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self.handle.task

    def emit(self, event: StreamEvent) -> None:
        self._queue.put_nowait(event)

    async def events(self) -> AsyncGenerator[StreamEvent, None]:
        """Yield events in emission order up to and including the terminal one."""
        while True:
            event = await self._queue.get()
            yield event
            if event.event in TERMINAL_EVENTS:
                return


class GenerationService:
    """Orchestrates generations for all conversations of this process."""

    def __init__(
        self,
        store: MessageStore,
        registry: StreamRegistry,
        llm_service: LLMService,
        visualization: Optional[VisualizationPipeline] = None,
        checkpoint_interval: Optional[int] = None
    ):
        self.store = store
        self.registry = registry
        self.llm_service = llm_service
        self.visualization = visualization
        self.checkpoint_interval = checkpoint_interval or settings.CHECKPOINT_INTERVAL

    def stop(self, conversation_id: str) -> bool:
        """User-initiated stop. Returns whether a generation was active."""
        return self.registry.stop(conversation_id, USER_CANCELLED) is not None

    async def start(self, request: GenerateRequest) -> Generation:
        """
        Resolve the turn, persist the placeholder and launch the stream.

        Raises:
            ConfigurationError: no upstream credential; nothing is persisted.
            NotFoundError: unknown conversation or parent message.
            InvalidRequestError: the parent message is not a user message.
        """
        if not self.llm_service.is_configured:
            raise ConfigurationError("OpenAI API key not configured")

        async with self.registry.lock(request.conversation_id):
            conversation = await self.store.require_conversation(request.conversation_id)
            return await self._resolve_and_launch(conversation, request)

    async def _require_user_message(self, conversation: Conversation, message_id: str) -> Message:
        message = await self.store.get_message(message_id)
        if message is None or message.conversation_id != conversation.id:
            raise NotFoundError("Parent message not found")
        if message.role != MessageRole.USER:
            raise InvalidRequestError(f"Parent message {message_id} is not a user message")
        return message

    async def _resolve_and_launch(self, conversation: Conversation, request: GenerateRequest) -> Generation:
        title_was_default = not conversation.title or conversation.title == settings.DEFAULT_TITLE
        first_response = await self.store.count_assistant_messages(conversation.id) == 0

        # Resolve where the new branch hangs off the tree
        edited: Optional[Message] = None
        if request.is_regeneration:
            answered = await self._require_user_message(conversation, request.parent_user_message_id)
            user_message_id = answered.message_id
            user_text = answered.content
        else:
            user_message_id = str(uuid.uuid4())
            user_text = request.user_message
            if request.is_edit:
                edited = await self._require_user_message(conversation, request.user_message_parent_id)
                user_parent_id = edited.message_id
            else:
                latest = await self.store.latest_non_user_message(conversation.id)
                user_parent_id = latest.message_id if latest else None

        # At most one live generation per conversation: the previous one is
        # fully finalized before our placeholder exists.
        reason = USER_EDITED_PROMPT if edited is not None else USER_CANCELLED
        previous = self.registry.stop(request.conversation_id, reason)
        if previous is not None:
            await previous.wait()

        if not request.is_regeneration:
            if edited is not None:
                interrupted = await self.store.interrupt_streaming_children(
                    conversation.id, edited.message_id, USER_EDITED_PROMPT
                )
                if interrupted:
                    logger.info("Interrupted %d answer(s) to edited message %s", interrupted, edited.message_id)

            await self.store.create_message(
                conversation.id,
                message_id=user_message_id,
                role=MessageRole.USER,
                content=user_text,
                status=MessageStatus.COMPLETE,
                parent_id=user_parent_id
            )

            if title_was_default and user_text.strip():
                conversation = await self.store.update_conversation(
                    request.conversation_id,
                    title=user_text.strip()[:settings.TITLE_MAX_LENGTH]
                )

        model = request.model or conversation.model or settings.DEFAULT_MODEL
        info = get_model_info(model)

        history = await self.store.list_messages(conversation.id)
        budget = build_prompt(
            model,
            self._system_prompt(request, history),
            [
                {"role": m.role.value.lower(), "content": m.content}
                for m in history
                if m.role != MessageRole.SYSTEM and m.content
            ],
            info.max_context_tokens,
            info.output_headroom_ratio
        )
        max_tokens = max(
            settings.MIN_COMPLETION_TOKENS,
            min(budget.max_completion_tokens, info.max_completion_tokens)
        )

        variant_index = 0
        if request.is_regeneration:
            variant_index = await self.store.next_variant_index(conversation.id, user_message_id)
            if variant_index != request.variant_index:
                logger.debug(
                    "Variant index %d requested for %s, assigned %d",
                    request.variant_index, user_message_id, variant_index
                )

        # Persist the placeholder before any upstream call so a crash
        # mid-stream still leaves a recoverable row.
        assistant_message_id = str(uuid.uuid4())
        await self.store.create_message(
            conversation.id,
            message_id=assistant_message_id,
            role=MessageRole.ASSISTANT,
            content="",
            status=MessageStatus.STREAMING,
            parent_id=user_message_id,
            variant_index=variant_index,
            model=model,
            prompt_tokens=budget.prompt_tokens
        )
        await self.store.touch_conversation(conversation.id)

        generation = Generation(
            conversation=conversation,
            request=request,
            user_message_id=user_message_id,
            user_text=user_text,
            assistant_message_id=assistant_message_id,
            model=model,
            prompt=budget.messages,
            max_tokens=max_tokens,
            generate_title=(
                not request.is_regeneration
                and title_was_default
                and first_response
                and bool(user_text.strip())
            )
        )
        generation.emit(StartEvent(
            conversation_id=request.conversation_id,
            message_id=assistant_message_id,
            parent_id=user_message_id,
            role=MessageRole.ASSISTANT.value,
            model=model
        ))

        generation.state = GenerationState.STREAMING
        generation.handle.attach(asyncio.create_task(self._run(generation)))
        self.registry.set(request.conversation_id, generation.handle)
        logger.info(
            "Generation %s started in %s (model=%s, variant=%d, prompt_tokens=%d)",
            assistant_message_id, request.conversation_id, model, variant_index, budget.prompt_tokens
        )
        return generation

    def _system_prompt(self, request: GenerateRequest, history: List[Message]) -> str:
        if request.system_prompt:
            return request.system_prompt
        for message in history:
            if message.role == MessageRole.SYSTEM:
                return message.content
        return settings.DEFAULT_SYSTEM_PROMPT

    async def _run(self, generation: Generation) -> None:
        """Body of the generation task. Always ends with a terminal event."""
        completed = False
        try:
            generation.handle.mark_started()
            stream = self.llm_service.stream_chat(generation.model, generation.prompt, generation.max_tokens)
            async with aclosing(stream):
                async for delta in stream:
                    if delta.content:
                        generation.content += delta.content
                        generation.completion_tokens += 1
                        generation.emit(TokenEvent(token=delta.content))
                        if generation.completion_tokens % self.checkpoint_interval == 0:
                            await self._checkpoint(generation)
                    if delta.finish_reason:
                        generation.finish_reason = delta.finish_reason
                        generation.emit(FinishEvent(finish_reason=delta.finish_reason))

            await self.store.update_message(
                generation.assistant_message_id,
                content=generation.content,
                status=MessageStatus.COMPLETE,
                completion_tokens=generation.completion_tokens,
                finish_reason=generation.finish_reason or "stop"
            )
            completed = True
            generation.state = GenerationState.COMPLETE

            if generation.generate_title:
                await self._generate_title(generation)
            if self.visualization is not None:
                await self._visualize(generation)

            generation.emit(EndEvent(status="complete"))
            logger.info("Generation %s complete (%d tokens)", generation.assistant_message_id, generation.completion_tokens)

        except asyncio.CancelledError:
            if completed:
                # Stopped during title or visualization: the answer itself is done
                generation.emit(EndEvent(status="complete"))
                return
            generation.state = GenerationState.INTERRUPTED
            await self._finalize(generation, MessageStatus.INTERRUPTED, generation.handle.reason)
            generation.emit(EndEvent(status="interrupted"))
            logger.info("Generation %s interrupted (%s)", generation.assistant_message_id, generation.handle.reason)

        except Exception as e:
            logger.exception("Generation %s failed", generation.assistant_message_id)
            if completed:
                generation.emit(EndEvent(status="complete"))
                return
            generation.state = GenerationState.ERROR
            await self._finalize(generation, MessageStatus.ERROR, "error")
            message = e.message if isinstance(e, UpstreamFailure) else str(e)
            generation.emit(ErrorEvent(message=message or "Unknown error occurred"))

        finally:
            self.registry.clear(generation.conversation_id, generation.handle)

    async def _checkpoint(self, generation: Generation) -> None:
        try:
            await self.store.checkpoint(
                generation.assistant_message_id,
                generation.content,
                generation.completion_tokens
            )
        except PersistenceCheckpointFailure as e:
            logger.warning("Checkpoint of %s failed: %s", generation.assistant_message_id, e.message)

    async def _finalize(self, generation: Generation, status: MessageStatus, finish_reason: str) -> None:
        """Persist partial content with a terminal status. Attempted once."""
        try:
            await self.store.update_message(
                generation.assistant_message_id,
                content=generation.content,
                status=status,
                completion_tokens=generation.completion_tokens,
                finish_reason=finish_reason
            )
        except SQLAlchemyError:
            logger.exception("Could not finalize %s as %s", generation.assistant_message_id, status.value)

    async def _generate_title(self, generation: Generation) -> None:
        try:
            title = await self.llm_service.generate_title(generation.user_text, generation.content)
            await self.store.update_conversation(generation.conversation_id, title=title)
        except Exception as e:
            logger.warning("Title generation failed for %s: %s", generation.conversation_id, e)
            return
        generation.emit(TitleEvent(title=title))

    async def _visualize(self, generation: Generation) -> None:
        try:
            await self.visualization.run(
                generation.assistant_message_id,
                generation.user_text,
                generation.content,
                generation.emit
            )
        except Exception as e:
            logger.warning("Visualization failed for %s: %s", generation.assistant_message_id, e)
            generation.emit(StatusEvent(status="error", message=str(e)))
