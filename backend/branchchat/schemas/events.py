"""
Typed server-sent events of a generation stream.

Each event is a frame ``event: <name>\\ndata: <json>\\n\\n``. The set of
events is closed: `EVENT_TYPES` maps every event name to its payload schema,
and `parse_event` rejects anything else.
"""

from pydantic import AliasChoices, BaseModel, Field
from typing import Any, Dict, Literal, Optional, Type, Union
import json

from .message import WireModel


class StartEvent(WireModel):
    """Sent once, right after the assistant placeholder is persisted."""
    event: Literal["start"] = Field("start", exclude=True)
    conversation_id: str
    message_id: str
    parent_id: Optional[str] = None
    role: str = "ASSISTANT"
    model: str


class TokenEvent(WireModel):
    event: Literal["token"] = Field("token", exclude=True)
    token: str = Field(validation_alias=AliasChoices("token", "delta"))


class FinishEvent(WireModel):
    event: Literal["finish"] = Field("finish", exclude=True)
    finish_reason: str


class StatusEvent(WireModel):
    """Progress of an optional sub-pipeline stage."""
    event: Literal["status"] = Field("status", exclude=True)
    stage: Optional[int] = None
    status: str
    message: Optional[str] = None


class StructuredDataEvent(WireModel):
    """Arbitrary JSON; the payload itself is the frame data."""
    event: Literal["structured_data"] = Field("structured_data", exclude=True)
    data: Any = None


class VizConfigEvent(WireModel):
    """Arbitrary JSON; the payload itself is the frame data."""
    event: Literal["viz_config"] = Field("viz_config", exclude=True)
    data: Any = None


class TitleEvent(WireModel):
    event: Literal["title"] = Field("title", exclude=True)
    title: str


class EndEvent(WireModel):
    """Terminal event of a generation that did not fail."""
    event: Literal["end"] = Field("end", exclude=True)
    status: Literal["complete", "interrupted"]


class ErrorEvent(WireModel):
    """Terminal event of a failed generation."""
    event: Literal["error"] = Field("error", exclude=True)
    message: str


StreamEvent = Union[
    StartEvent,
    TokenEvent,
    FinishEvent,
    StatusEvent,
    StructuredDataEvent,
    VizConfigEvent,
    TitleEvent,
    EndEvent,
    ErrorEvent,
]

EVENT_TYPES: Dict[str, Type[BaseModel]] = {
    "start": StartEvent,
    "token": TokenEvent,
    "finish": FinishEvent,
    "status": StatusEvent,
    "structured_data": StructuredDataEvent,
    "viz_config": VizConfigEvent,
    "title": TitleEvent,
    "end": EndEvent,
    "error": ErrorEvent,
}

# Events whose frame data is the raw payload rather than an object of fields
_RAW_PAYLOAD_EVENTS = (StructuredDataEvent, VizConfigEvent)

TERMINAL_EVENTS = ("end", "error")


class UnknownEventError(ValueError):
    """Frame carried an event name outside the protocol."""


def event_payload(event: StreamEvent) -> Any:
    """Return the JSON-serializable data of an event frame."""
    if isinstance(event, _RAW_PAYLOAD_EVENTS):
        return event.data
    return event.model_dump(mode="json", by_alias=True, exclude_none=True)


def encode_sse(event: StreamEvent) -> str:
    """Serialize an event as a server-sent event frame."""
    return f"event: {event.event}\ndata: {json.dumps(event_payload(event))}\n\n"


def parse_event(name: str, payload: Any) -> StreamEvent:
    """Build the typed event for a frame's name and decoded data."""
    event_type = EVENT_TYPES.get(name)
    if event_type is None:
        raise UnknownEventError(f"Unknown event: {name}")
    if event_type in _RAW_PAYLOAD_EVENTS:
        return event_type(data=payload)
    return event_type.model_validate(payload or {})
