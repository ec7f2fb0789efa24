"""
Tests for stream event ordering and SSE framing.
"""

import json

import pytest

from src.shared.errors import StreamStateError
from src.streaming import events
from src.streaming.events import StreamState, StreamStateMachine, to_sse


def run(*sequence):
    machine = StreamStateMachine()
    for event in sequence:
        machine.advance(event)
    return machine


class TestLegalSequences:
    def test_answer_stream(self):
        machine = run(
            events.connection_opened("q1"),
            events.chunk("a", "a"),
            events.chunk("b", "ab"),
            events.citations([]),
            events.metadata(),
            events.response_completed({}),
            events.done("q1"),
        )
        assert machine.terminated
        assert not machine.errored

    def test_refusal_stream(self):
        machine = run(
            events.connection_opened("q1"),
            events.response_completed({"answer": "I don't know"}),
            events.done("q1"),
        )
        assert machine.terminated

    def test_error_mid_stream(self):
        machine = run(
            events.connection_opened("q1"),
            events.chunk("a", "a"),
            events.error("GENERATION_FAILED", "try again"),
            events.done("q1"),
        )
        assert machine.errored
        assert machine.terminated

    def test_metadata_without_citations(self):
        machine = run(
            events.connection_opened("q1"),
            events.metadata({"model": "m"}),
        )
        assert machine.state == StreamState.METADATA


class TestIllegalSequences:
    @pytest.mark.parametrize(
        "sequence",
        [
            # chunk before the connection is opened
            [events.chunk("a", "a")],
            # chunk after citations
            [events.connection_opened("q"), events.citations([]), events.chunk("a", "a")],
            # done without a terminal event
            [events.connection_opened("q"), events.done("q")],
            # error after completion
            [
                events.connection_opened("q"),
                events.response_completed({}),
                events.error("X", "x"),
            ],
            # anything after done
            [
                events.connection_opened("q"),
                events.response_completed({}),
                events.done("q"),
                events.done("q"),
            ],
            # second connection_opened
            [events.connection_opened("q"), events.connection_opened("q")],
        ],
    )
    def test_rejected(self, sequence):
        with pytest.raises(StreamStateError):
            run(*sequence)

    def test_error_details(self):
        machine = StreamStateMachine()

        with pytest.raises(StreamStateError) as exc_info:
            machine.advance(events.done("q"))

        assert exc_info.value.details == {"state": "initial", "event": "done"}
        assert machine.state == StreamState.INITIAL

    def test_can_emit(self):
        machine = run(events.connection_opened("q"))

        assert machine.can_emit("chunk")
        assert not machine.can_emit("done")
        assert not machine.can_emit("unknown")


class TestSse:
    def test_chunk_framing(self):
        frame = to_sse(events.chunk("is 42.", "The answer is 42."))

        assert frame.startswith("event: chunk\ndata: ")
        assert frame.endswith("\n\n")
        payload = json.loads(frame.split("data: ", 1)[1])
        assert payload == {"text": "is 42.", "accumulated": "The answer is 42."}

    def test_error_framing(self):
        frame = to_sse(events.error("RETRIEVAL_FAILED", "Search is down"))

        assert frame == (
            'event: error\ndata: {"code": "RETRIEVAL_FAILED", "message": "Search is down"}\n\n'
        )

    def test_done_carries_query_id(self):
        payload = json.loads(to_sse(events.done("q-9")).split("data: ", 1)[1])

        assert payload["query_id"] == "q-9"
        assert "timestamp" in payload
