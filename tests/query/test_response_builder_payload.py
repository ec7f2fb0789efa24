"""
Tests for the response_completed payload builder.
"""

import json

import pytest

from conftest import fused_result
from src.guardrail import AnswerabilityGuardrail
from src.query.response_builder import ResponseBuilder, build_citations
from src.shared.errors import ResponseBuildError
from src.shared.filters import UserContext


@pytest.fixture
def decision():
    guardrail = AnswerabilityGuardrail()
    results = [fused_result("a", 0.92), fused_result("b", 0.87)]
    return guardrail.evaluate("what is a stripe", results, UserContext(id="u1"))


class TestResponseBuilder:
    def test_build_complete_payload(self, decision):
        results = [
            fused_result("a", 0.92, payload={"title": "Stripes", "url": "https://docs/a"}),
            fused_result("b", 0.87, doc_id="guide"),
        ]

        response = (
            ResponseBuilder()
            .answer("A stripe is a set of blocks.")
            .retrieved_documents(results)
            .guardrail_decision(decision)
            .citations(build_citations(results))
            .metrics({"total_duration_ms": 12.5})
            .build()
        )
        payload = response.to_dict()

        assert not response.is_refusal
        assert payload["answer"] == "A stripe is a set of blocks."
        assert [d["id"] for d in payload["retrieved_documents"]] == ["a", "b"]
        assert payload["retrieved_documents"][1]["doc_id"] == "guide"
        assert payload["guardrail_decision"]["is_answerable"] is True
        assert payload["citations"][0] == {
            "number": 1,
            "id": "a",
            "doc_id": "a",
            "title": "Stripes",
            "url": "https://docs/a",
        }
        assert payload["metrics"] == {"total_duration_ms": 12.5}
        # the whole payload must be JSON serializable
        json.dumps(payload)

    def test_missing_fields_raise(self):
        with pytest.raises(ResponseBuildError) as exc_info:
            ResponseBuilder().answer("partial").build()

        assert exc_info.value.details["missing"] == ["retrieved_documents", "guardrail_decision"]

    def test_empty_answer_is_allowed(self, decision):
        response = (
            ResponseBuilder()
            .answer("")
            .retrieved_documents([])
            .guardrail_decision(decision)
            .build()
        )

        assert response.to_dict()["retrieved_documents"] == []
        assert "metrics" not in response.to_dict()

    def test_decision_summary_keeps_audit_trail_server_side(self, decision):
        payload = (
            ResponseBuilder()
            .answer("A stripe is a set of blocks.")
            .retrieved_documents([])
            .guardrail_decision(decision)
            .build()
            .to_dict()
        )
        summary = payload["guardrail_decision"]

        assert set(summary) == {
            "is_answerable",
            "confidence",
            "threshold_type",
            "reason_code",
            "message",
            "suggestions",
        }
        assert summary["threshold_type"] == decision.threshold.type
        assert summary["reason_code"] is None
        serialized = json.dumps(summary)
        assert "u1" not in serialized
        assert "what is a stripe" not in serialized

    def test_refusal_summary_carries_reason(self):
        decision = AnswerabilityGuardrail().evaluate(
            "what is a stripe", [fused_result("a", 0.1)], UserContext(id="u1")
        )

        response = (
            ResponseBuilder()
            .answer("")
            .retrieved_documents([])
            .guardrail_decision(decision)
            .build()
        )
        summary = response.to_dict()["guardrail_decision"]

        assert summary["is_answerable"] is False
        assert summary["reason_code"] == decision.idk_response.reason_code
        assert summary["message"] == decision.idk_response.message


class TestBuildCitations:
    def test_numbered_in_evidence_order(self):
        citations = build_citations([fused_result("x", 0.5), fused_result("y", 0.4)])

        assert [c["number"] for c in citations] == [1, 2]
        assert [c["id"] for c in citations] == ["x", "y"]
        assert citations[0]["title"] is None
