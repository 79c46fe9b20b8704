"""
Pytest configuration and shared fixtures for BranchChat tests.
"""

import asyncio
from pathlib import Path
from typing import AsyncGenerator, List, Optional

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from branchchat.database import create_engine, create_session_factory, init_db, close_db
from branchchat.errors import UpstreamFailure
from branchchat.main import create_app
from branchchat.models.message import MessageRole, MessageStatus
from branchchat.services.generation_service import Generation, GenerationService
from branchchat.services.llm_service import StreamDelta
from branchchat.services.message_store import MessageStore
from branchchat.services.stream_registry import StreamRegistry


class FakeLLMService:
    """
    Scripted stand-in for LLMService.

    `stream_chat` yields `deltas`; when `hold_after` is set it parks after that
    many deltas until `release` is set, signalling `holding` while parked.
    `error`, when set, is raised once the scripted deltas are exhausted.
    """

    def __init__(self):
        self.configured = True
        self.deltas: List[StreamDelta] = [
            StreamDelta(content="Hel"),
            StreamDelta(content="lo"),
            StreamDelta(content=" there"),
            StreamDelta(finish_reason="stop"),
        ]
        self.hold_after: Optional[int] = None
        self.holding = asyncio.Event()
        self.release = asyncio.Event()
        self.error: Optional[Exception] = None
        self.title = "Fake Title"
        self.title_error: Optional[Exception] = None
        self.completions: List[str] = []
        self.stream_calls: List[dict] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def stream_chat(self, model, messages, max_tokens):
        self.stream_calls.append({"model": model, "messages": messages, "max_tokens": max_tokens})
        hold_after = self.hold_after
        deltas = list(self.deltas)
        error = self.error
        for i, delta in enumerate(deltas):
            if hold_after is not None and i == hold_after:
                self.holding.set()
                await self.release.wait()
            yield delta
        if error is not None:
            raise error

    async def complete(self, model, messages, max_tokens, temperature=0.7, json_mode=False):
        if not self.completions:
            raise UpstreamFailure("No scripted completion")
        return self.completions.pop(0)

    async def generate_title(self, user_message, assistant_message):
        if self.title_error is not None:
            raise self.title_error
        return self.title


async def collect(generation: Generation) -> list:
    """Drain a generation's events and wait for its task to finish."""
    events = [event async for event in generation.events()]
    await generation.handle.wait()
    return events


def names(events) -> List[str]:
    return [event.event for event in events]


async def streaming_rows(store: MessageStore, conversation_pk: int) -> list:
    messages = await store.list_messages(conversation_pk, role=MessageRole.ASSISTANT)
    return [m for m in messages if m.status == MessageStatus.STREAMING]


@pytest.fixture
def llm() -> FakeLLMService:
    return FakeLLMService()


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'branchchat-test.db'}"


@pytest_asyncio.fixture
async def store(db_url: str) -> AsyncGenerator[MessageStore, None]:
    """Message store over a fresh per-test SQLite file."""
    engine = create_engine(db_url)
    await init_db(engine)
    yield MessageStore(create_session_factory(engine))
    await close_db(engine)


@pytest.fixture
def registry() -> StreamRegistry:
    return StreamRegistry()


@pytest_asyncio.fixture
async def service(store, registry, llm) -> AsyncGenerator[GenerationService, None]:
    service = GenerationService(store, registry, llm, checkpoint_interval=2)
    yield service

    # Let nothing outlive the test's event loop
    llm.release.set()
    for conversation_id in list(registry._handles):
        handle = registry.stop(conversation_id)
        if handle is not None:
            await handle.wait()


@pytest_asyncio.fixture
async def conversation(store):
    return await store.create_conversation()


@pytest.fixture
def app(db_url, llm):
    return create_app(database_url=db_url, llm_service=llm, enable_visualization=False)


@pytest.fixture
def client(app):
    """Test client with the application lifespan running."""
    with TestClient(app) as client:
        yield client
