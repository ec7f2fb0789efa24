"""Streaming answer delivery: ordered events over a producer/consumer channel."""

from src.streaming.coordinator import CancellationToken, ErrorResponse, StreamingCoordinator
from src.streaming.events import StreamEvent, StreamStateMachine, to_sse

__all__ = [
    "CancellationToken",
    "ErrorResponse",
    "StreamEvent",
    "StreamStateMachine",
    "StreamingCoordinator",
    "to_sse",
]
