"""
LLM service for interacting with an OpenAI-compatible chat completions API.
"""

from openai import AsyncOpenAI, OpenAIError
from dataclasses import dataclass
from typing import AsyncGenerator, List, Optional, Dict, Any
import logging

from ..config import settings
from ..errors import ConfigurationError, UpstreamFailure


logger = logging.getLogger(__name__)

TITLE_PROMPT = (
    "Generate a concise, descriptive title (3-6 words) for this conversation based on "
    "the user message and assistant response. Return only the title, no quotes or extra text."
)


@dataclass
class StreamDelta:
    """One increment of a streamed completion."""
    content: str = ""
    finish_reason: Optional[str] = None


def _error_message(error: Exception) -> str:
    """Best-effort human readable message of an upstream error."""
    message = getattr(error, "message", None) or str(error)
    return message or error.__class__.__name__


class LLMService:
    """Service for LLM interactions."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None
    ):
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.api_base = api_base or settings.OPENAI_API_BASE
        self._client: Optional[AsyncOpenAI] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def client(self) -> AsyncOpenAI:
        if not self.is_configured:
            raise ConfigurationError("OpenAI API key not configured")
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.api_base)
        return self._client

    async def stream_chat(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        max_tokens: int
    ) -> AsyncGenerator[StreamDelta, None]:
        """
        Stream a chat completion.

        Yields a StreamDelta per content fragment, and one carrying the finish
        reason when the upstream signals it. Task cancellation propagates
        unchanged; every other upstream error is raised as UpstreamFailure.
        """
        try:
            stream = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                stream=True
            )

            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                content = choice.delta.content if choice.delta else None
                if content or choice.finish_reason:
                    yield StreamDelta(content=content or "", finish_reason=choice.finish_reason)

        except OpenAIError as e:
            raise UpstreamFailure(_error_message(e)) from e

    async def complete(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        max_tokens: int,
        temperature: float = 0.7,
        json_mode: bool = False
    ) -> str:
        """Non-streaming chat completion returning the message text."""
        kwargs: Dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
                stream=False,
                **kwargs
            )
        except OpenAIError as e:
            raise UpstreamFailure(_error_message(e)) from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def generate_title(self, user_message: str, assistant_message: str) -> str:
        """Generate a short title for a conversation from its first exchange."""
        title = await self.complete(
            model=settings.TITLE_MODEL,
            messages=[
                {"role": "system", "content": TITLE_PROMPT},
                {
                    "role": "user",
                    "content": f"User: {user_message}\n\nAssistant: {assistant_message}\n\nGenerate a title:"
                }
            ],
            max_tokens=20,
            temperature=0.7
        )

        # Clean up the title
        title = title.strip().strip('"\'').strip()
        if not title:
            raise UpstreamFailure("Empty title returned")
        return title[:200]
