"""
Stream event types and the state machine that orders them.

Legal sequences:

    connection_opened -> chunk* -> citations? -> metadata? -> response_completed -> done
    connection_opened -> response_completed -> done           (guardrail refusal)
    <any state before response_completed> -> error -> done
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import Field

from src.shared.errors import StreamStateError
from src.shared.models import FrozenModel


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConnectionOpenedData(FrozenModel):
    query_id: str
    timestamp: str = Field(default_factory=_now)


class ChunkData(FrozenModel):
    text: str
    accumulated: str


class ErrorData(FrozenModel):
    code: str
    message: str


class DoneData(FrozenModel):
    query_id: str
    timestamp: str = Field(default_factory=_now)


class ConnectionOpened(FrozenModel):
    type: Literal["connection_opened"] = "connection_opened"
    data: ConnectionOpenedData


class Chunk(FrozenModel):
    type: Literal["chunk"] = "chunk"
    data: ChunkData


class Citations(FrozenModel):
    type: Literal["citations"] = "citations"
    data: List[Dict[str, Any]]


class Metadata(FrozenModel):
    type: Literal["metadata"] = "metadata"
    data: Dict[str, Any]


class ResponseCompleted(FrozenModel):
    type: Literal["response_completed"] = "response_completed"
    data: Dict[str, Any]


class Error(FrozenModel):
    type: Literal["error"] = "error"
    data: ErrorData


class Done(FrozenModel):
    type: Literal["done"] = "done"
    data: DoneData


StreamEvent = Union[
    ConnectionOpened, Chunk, Citations, Metadata, ResponseCompleted, Error, Done
]


def to_sse(event: StreamEvent) -> str:
    """Render an event in text/event-stream framing."""
    payload = event.model_dump(mode="json")["data"]
    return f"event: {event.type}\ndata: {json.dumps(payload)}\n\n"


class StreamState(str, Enum):
    INITIAL = "initial"
    OPENED = "opened"
    STREAMING = "streaming"
    CITATIONS = "citations"
    METADATA = "metadata"
    COMPLETED = "completed"
    ERROR = "error"
    DONE = "done"


_EVENT_STATE = {
    "connection_opened": StreamState.OPENED,
    "chunk": StreamState.STREAMING,
    "citations": StreamState.CITATIONS,
    "metadata": StreamState.METADATA,
    "response_completed": StreamState.COMPLETED,
    "error": StreamState.ERROR,
    "done": StreamState.DONE,
}

_TRANSITIONS = {
    StreamState.INITIAL: {StreamState.OPENED, StreamState.ERROR},
    StreamState.OPENED: {
        StreamState.STREAMING,
        StreamState.CITATIONS,
        StreamState.METADATA,
        StreamState.COMPLETED,
        StreamState.ERROR,
    },
    StreamState.STREAMING: {
        StreamState.STREAMING,
        StreamState.CITATIONS,
        StreamState.METADATA,
        StreamState.COMPLETED,
        StreamState.ERROR,
    },
    StreamState.CITATIONS: {StreamState.METADATA, StreamState.COMPLETED, StreamState.ERROR},
    StreamState.METADATA: {StreamState.COMPLETED, StreamState.ERROR},
    StreamState.COMPLETED: {StreamState.DONE},
    StreamState.ERROR: {StreamState.DONE},
    StreamState.DONE: set(),
}


class StreamStateMachine:
    """Rejects events that would break stream ordering."""

    def __init__(self) -> None:
        self.state = StreamState.INITIAL
        self.errored = False

    @property
    def terminated(self) -> bool:
        return self.state == StreamState.DONE

    def can_emit(self, event_type: str) -> bool:
        target = _EVENT_STATE.get(event_type)
        return target is not None and target in _TRANSITIONS[self.state]

    def advance(self, event: StreamEvent) -> None:
        """
        Raises:
            StreamStateError: If the event is not legal in the current state
        """
        if not self.can_emit(event.type):
            raise StreamStateError(
                f"cannot emit {event.type!r} in state {self.state.value!r}",
                details={"state": self.state.value, "event": event.type},
            )
        self.state = _EVENT_STATE[event.type]
        if self.state == StreamState.ERROR:
            self.errored = True


def connection_opened(query_id: str) -> ConnectionOpened:
    return ConnectionOpened(data=ConnectionOpenedData(query_id=query_id))


def chunk(text: str, accumulated: str) -> Chunk:
    return Chunk(data=ChunkData(text=text, accumulated=accumulated))


def error(code: str, message: str) -> Error:
    return Error(data=ErrorData(code=code, message=message))


def done(query_id: str) -> Done:
    return Done(data=DoneData(query_id=query_id))


def citations(items: List[Dict[str, Any]]) -> Citations:
    return Citations(data=items)


def metadata(data: Optional[Dict[str, Any]] = None) -> Metadata:
    return Metadata(data=data or {})


def response_completed(data: Dict[str, Any]) -> ResponseCompleted:
    return ResponseCompleted(data=data)
