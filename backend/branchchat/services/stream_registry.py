"""
Registry of in-flight generations, one per conversation.

The registry is process-local. Running several server processes needs a
shared lease store behind the same interface.
"""

from typing import Dict, Optional
import asyncio
import logging
import weakref


logger = logging.getLogger(__name__)

USER_CANCELLED = "user_cancelled"
USER_EDITED_PROMPT = "user_edited_prompt"


class GenerationHandle:
    """Cancellation handle for one generation task."""

    def __init__(self, conversation_id: str, message_id: str):
        self.conversation_id = conversation_id
        self.message_id = message_id
        self.reason = USER_CANCELLED
        self.task: Optional[asyncio.Task] = None
        self.started = False
        self.cancelled = False

    def attach(self, task: asyncio.Task) -> None:
        self.task = task

    def mark_started(self) -> None:
        """
        Called first thing by the task body. A cancel that arrived before the
        task ever ran is raised here, inside the body's own error handling.
        """
        self.started = True
        if self.cancelled:
            raise asyncio.CancelledError()

    def cancel(self, reason: str = USER_CANCELLED) -> None:
        """Request cancellation; `reason` becomes the recorded finish reason."""
        if self.cancelled or (self.task is not None and self.task.done()):
            return
        self.cancelled = True
        self.reason = reason
        if self.started and self.task is not None:
            self.task.cancel()

    async def wait(self) -> None:
        """Wait for the generation task to finish its own finalization."""
        if self.task is None or self.task is asyncio.current_task():
            return
        await asyncio.wait({self.task})


class StreamRegistry:
    """Maps conversation id -> handle of its active generation."""

    def __init__(self):
        self._handles: Dict[str, GenerationHandle] = {}
        # A lock lives only while a request holds or awaits it
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock(self, conversation_id: str) -> asyncio.Lock:
        """Per-conversation lock guarding turn resolution."""
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = asyncio.Lock()
        return lock

    def get(self, conversation_id: str) -> Optional[GenerationHandle]:
        return self._handles.get(conversation_id)

    def is_active(self, conversation_id: str) -> bool:
        return conversation_id in self._handles

    def set(self, conversation_id: str, handle: GenerationHandle) -> None:
        """Register `handle`, cancelling whatever generation it replaces."""
        previous = self._handles.get(conversation_id)
        if previous is not None and previous is not handle:
            logger.info("Replacing active generation %s in %s", previous.message_id, conversation_id)
            previous.cancel()
        self._handles[conversation_id] = handle

    def stop(self, conversation_id: str, reason: str = USER_CANCELLED) -> Optional[GenerationHandle]:
        """Cancel and remove the active generation. Returns the stopped handle."""
        handle = self._handles.pop(conversation_id, None)
        if handle is not None:
            logger.info("Stopping generation %s in %s (%s)", handle.message_id, conversation_id, reason)
            handle.cancel(reason)
        return handle

    def clear(self, conversation_id: str, handle: Optional[GenerationHandle] = None) -> None:
        """
        Remove the entry without cancelling.

        When `handle` is given the entry is only removed if it is still the
        registered one, so a finishing generation never evicts its successor.
        """
        current = self._handles.get(conversation_id)
        if current is None:
            return
        if handle is None or current is handle:
            del self._handles[conversation_id]
