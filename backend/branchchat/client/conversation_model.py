"""
Client-side mirror of one conversation's message tree.

The server returns a flat, creation-ordered message list. Turns (a user
message, its edited versions, and the assistant variants answering each
version) are derived from that list on every call, so they are never stale.
Version and variant selections are remembered by message id and survive a
reload.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from ..models.message import MessageRole, MessageStatus
from ..schemas.conversation import ConversationResponse
from ..schemas.events import (
    EndEvent,
    ErrorEvent,
    FinishEvent,
    StartEvent,
    StatusEvent,
    StreamEvent,
    StructuredDataEvent,
    TitleEvent,
    TokenEvent,
    VizConfigEvent,
)
from ..schemas.message import GenerateRequest, MessageResponse


PREV = "prev"
NEXT = "next"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def status_label(event: StatusEvent) -> str:
    """Human readable label of a sub-pipeline status event."""
    label = event.status if event.stage is None else f"Stage {event.stage}: {event.status}"
    if event.message:
        label = f"{label} - {event.message}"
    return label


def merge_streaming(server: MessageResponse, local: MessageResponse) -> MessageResponse:
    """
    Reconcile the server copy of an in-flight assistant message with ours.

    The longer content wins and STREAMING wins over any terminal status, so
    the result is the same whichever side has seen more of the stream.
    """
    merged = server.model_copy()
    if len(local.content) > len(server.content):
        merged.content = local.content
    if MessageStatus.STREAMING in (server.status, local.status):
        merged.status = MessageStatus.STREAMING
    return merged


@dataclass
class Turn:
    """A user turn: every version of the prompt and the answers to each."""
    user_versions: List[MessageResponse]
    variants: Dict[str, List[MessageResponse]] = field(default_factory=dict)
    current_version: int = 0
    current_variant: Dict[str, int] = field(default_factory=dict)

    @property
    def root_id(self) -> str:
        return self.user_versions[0].message_id

    @property
    def user_message(self) -> MessageResponse:
        return self.user_versions[self.current_version]

    @property
    def assistant_variants(self) -> List[MessageResponse]:
        return self.variants.get(self.user_message.message_id, [])

    @property
    def assistant_message(self) -> Optional[MessageResponse]:
        variants = self.assistant_variants
        if not variants:
            return None
        return variants[self.current_variant.get(self.user_message.message_id, 0)]


class ConversationState:
    """In-memory view of a conversation kept in sync with its event stream."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        self.conversation: Optional[ConversationResponse] = None
        self.messages: List[MessageResponse] = []
        self.by_id: Dict[str, MessageResponse] = {}
        self.index: Dict[str, int] = {}
        self.is_streaming = False
        self.current_assistant_id: Optional[str] = None
        self.pipeline_status: Dict[str, str] = {}
        self.error: Optional[str] = None

        # root user message id -> selected user version id
        self._version_cursor: Dict[str, str] = {}
        # user version id -> selected assistant variant id
        self._variant_cursor: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(
        self,
        conversation: Optional[ConversationResponse],
        server_messages: List[MessageResponse]
    ) -> None:
        """Replace the message list with the server's, keeping an in-flight answer."""
        messages = list(server_messages)
        local = self.by_id.get(self.current_assistant_id) if self.current_assistant_id else None

        if local is not None and self.is_streaming:
            for i, message in enumerate(messages):
                if message.message_id == local.message_id:
                    messages[i] = merge_streaming(message, local)
                    break
            else:
                # Placeholder not visible on the server yet
                messages.append(local)

        if conversation is not None:
            self.conversation = conversation
        self._set_messages(messages)

    def _set_messages(self, messages: List[MessageResponse]) -> None:
        self.messages = messages
        self.by_id = {m.message_id: m for m in messages}
        self.index = {m.message_id: i for i, m in enumerate(messages)}

    def _append(self, message: MessageResponse) -> None:
        self.index[message.message_id] = len(self.messages)
        self.messages.append(message)
        self.by_id[message.message_id] = message

    @property
    def current_assistant(self) -> Optional[MessageResponse]:
        if self.current_assistant_id is None:
            return None
        return self.by_id.get(self.current_assistant_id)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def apply(self, event: StreamEvent, request: Optional[GenerateRequest] = None) -> None:
        """Apply one stream event. `request` is the body that opened the stream."""
        handler: Optional[Callable] = getattr(self, f"_on_{event.event}", None)
        if handler is not None:
            handler(event, request)

    def _on_start(self, event: StartEvent, request: Optional[GenerateRequest]) -> None:
        self.is_streaming = True
        self.error = None
        self.current_assistant_id = event.message_id

        user_id = event.parent_id
        if user_id and user_id not in self.by_id and request is not None and not request.is_regeneration:
            parent_id = request.user_message_parent_id if request.is_edit else self._last_non_user_id()
            self._append(MessageResponse(
                message_id=user_id,
                role=MessageRole.USER,
                content=request.user_message,
                status=MessageStatus.COMPLETE,
                parent_id=parent_id,
                created_at=_now()
            ))

        if event.message_id not in self.by_id:
            siblings = [
                m for m in self.messages
                if m.role == MessageRole.ASSISTANT and m.parent_id == user_id
            ]
            self._append(MessageResponse(
                message_id=event.message_id,
                role=MessageRole.ASSISTANT,
                content="",
                status=MessageStatus.STREAMING,
                parent_id=user_id,
                variant_index=max((m.variant_index or 0 for m in siblings), default=-1) + 1,
                model=event.model,
                created_at=_now()
            ))

        # Show what is being generated
        if user_id:
            root_id = self._root_of(user_id)
            if root_id is not None:
                self._version_cursor[root_id] = user_id
            self._variant_cursor[user_id] = event.message_id

    def _on_token(self, event: TokenEvent, request: Optional[GenerateRequest]) -> None:
        message = self.current_assistant
        if message is not None:
            message.content += event.token

    def _on_finish(self, event: FinishEvent, request: Optional[GenerateRequest]) -> None:
        message = self.current_assistant
        if message is not None:
            message.finish_reason = event.finish_reason

    def _on_status(self, event: StatusEvent, request: Optional[GenerateRequest]) -> None:
        if self.current_assistant_id is not None:
            self.pipeline_status[self.current_assistant_id] = status_label(event)

    def _on_structured_data(self, event: StructuredDataEvent, request: Optional[GenerateRequest]) -> None:
        message = self.current_assistant
        if message is not None:
            message.structured_data = event.data

    def _on_viz_config(self, event: VizConfigEvent, request: Optional[GenerateRequest]) -> None:
        message = self.current_assistant
        if message is not None:
            message.visualization_config = event.data

    def _on_title(self, event: TitleEvent, request: Optional[GenerateRequest]) -> None:
        if self.conversation is not None:
            self.conversation.title = event.title

    def _on_end(self, event: EndEvent, request: Optional[GenerateRequest]) -> None:
        message = self.current_assistant
        if message is not None:
            message.status = MessageStatus.COMPLETE if event.status == "complete" else MessageStatus.INTERRUPTED
        self.is_streaming = False

    def _on_error(self, event: ErrorEvent, request: Optional[GenerateRequest]) -> None:
        message = self.current_assistant
        if message is not None and message.status == MessageStatus.STREAMING:
            message.status = MessageStatus.ERROR
        self.error = event.message
        self.is_streaming = False

    def mark_stopped(self) -> None:
        """Local abort: the reader is gone, so no terminal event will arrive."""
        message = self.current_assistant
        if message is not None and message.status == MessageStatus.STREAMING:
            message.status = MessageStatus.INTERRUPTED
        self.is_streaming = False

    def _last_non_user_id(self) -> Optional[str]:
        for message in reversed(self.messages):
            if message.role in (MessageRole.ASSISTANT, MessageRole.SYSTEM):
                return message.message_id
        return None

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def _is_root_user(self, message: MessageResponse) -> bool:
        if message.role != MessageRole.USER:
            return False
        parent = self.by_id.get(message.parent_id) if message.parent_id else None
        return parent is None or parent.role != MessageRole.USER

    def _root_of(self, message_id: str) -> Optional[str]:
        seen: Set[str] = set()
        current = self.by_id.get(message_id)
        while current is not None and current.message_id not in seen:
            seen.add(current.message_id)
            if self._is_root_user(current):
                return current.message_id
            current = self.by_id.get(current.parent_id) if current.parent_id else None
        return None

    def _user_versions(self, root: MessageResponse) -> List[MessageResponse]:
        """The root prompt and every edit reachable from it, oldest first."""
        children: Dict[str, List[MessageResponse]] = {}
        for message in self.messages:
            if message.role == MessageRole.USER and message.parent_id:
                children.setdefault(message.parent_id, []).append(message)

        versions: List[MessageResponse] = []
        visited: Set[str] = set()
        stack = [root]
        while stack:
            message = stack.pop()
            if message.message_id in visited:
                continue
            visited.add(message.message_id)
            versions.append(message)
            stack.extend(children.get(message.message_id, []))

        # The list is in creation order
        return sorted(versions, key=lambda m: self.index.get(m.message_id, 0))

    def turns(self) -> List[Turn]:
        """Derive the turns of the conversation from the flat message list."""
        turns: List[Turn] = []
        for root in (m for m in self.messages if self._is_root_user(m)):
            versions = self._user_versions(root)
            turn = Turn(user_versions=versions)

            selected = self._version_cursor.get(root.message_id)
            ids = [v.message_id for v in versions]
            turn.current_version = ids.index(selected) if selected in ids else len(versions) - 1

            for version in versions:
                answers = sorted(
                    (
                        m for m in self.messages
                        if m.role == MessageRole.ASSISTANT and m.parent_id == version.message_id
                    ),
                    key=lambda m: (m.variant_index or 0, self.index.get(m.message_id, 0))
                )
                turn.variants[version.message_id] = answers
                answer_ids = [a.message_id for a in answers]
                chosen = self._variant_cursor.get(version.message_id)
                turn.current_variant[version.message_id] = answer_ids.index(chosen) if chosen in answer_ids else 0

            turns.append(turn)
        return turns

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def navigate_version(self, turn_index: int, direction: str) -> Turn:
        """Move the selected prompt version of a turn one step, clamped."""
        turn = self.turns()[turn_index]
        step = -1 if direction == PREV else 1
        position = min(max(turn.current_version + step, 0), len(turn.user_versions) - 1)
        self._version_cursor[turn.root_id] = turn.user_versions[position].message_id
        return self.turns()[turn_index]

    def navigate_variant(self, turn_index: int, direction: str) -> Turn:
        """Move the selected answer of the turn's current version one step, clamped."""
        turn = self.turns()[turn_index]
        variants = turn.assistant_variants
        if not variants:
            return turn
        user_id = turn.user_message.message_id
        step = -1 if direction == PREV else 1
        position = min(max(turn.current_variant.get(user_id, 0) + step, 0), len(variants) - 1)
        self._variant_cursor[user_id] = variants[position].message_id
        return self.turns()[turn_index]
