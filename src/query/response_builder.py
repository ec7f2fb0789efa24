"""
Response Builder
Single place where the ``response_completed`` payload is assembled, for both
the streaming and the synchronous answer paths.

Mandatory fields (answer, retrieved documents, guardrail decision) are checked
at build() time; a missing one raises ResponseBuildError instead of sending a
partial payload.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from src.guardrail.models import GuardrailDecision
from src.query.results import FusedResult
from src.shared.errors import ResponseBuildError


@dataclass
class RetrievedDocument:
    """One evidence chunk as exposed to clients."""

    id: str
    doc_id: str
    content: str
    score: float
    rank: int
    search_type: str
    fusion_score: float
    reranker_score: Optional[float] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_result(cls, result: FusedResult) -> "RetrievedDocument":
        return cls(
            id=result.id,
            doc_id=result.doc_id,
            content=result.content,
            score=result.final_score,
            rank=result.rank,
            search_type=result.search_type.value,
            fusion_score=result.fusion_score,
            reranker_score=result.reranker_score,
            payload=dict(result.payload),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "doc_id": self.doc_id,
            "content": self.content,
            "score": self.score,
            "rank": self.rank,
            "search_type": self.search_type,
            "fusion_score": self.fusion_score,
            "reranker_score": self.reranker_score,
            "payload": self.payload,
        }


@dataclass
class CompletedResponse:
    """Payload of the ``response_completed`` event."""

    answer: str
    retrieved_documents: List[RetrievedDocument]
    guardrail_decision: GuardrailDecision
    citations: List[Dict[str, Any]] = field(default_factory=list)
    metrics: Optional[Dict[str, Any]] = None

    @property
    def is_refusal(self) -> bool:
        return not self.guardrail_decision.is_answerable

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: Dict[str, Any] = {
            "answer": self.answer,
            "retrieved_documents": [d.to_dict() for d in self.retrieved_documents],
            "guardrail_decision": decision_summary(self.guardrail_decision),
            "citations": list(self.citations),
        }
        if self.metrics is not None:
            data["metrics"] = self.metrics
        return data


def decision_summary(decision: GuardrailDecision) -> Dict[str, Any]:
    """Client-facing view of a guardrail decision; the audit trail stays server-side."""
    idk = decision.idk_response
    return {
        "is_answerable": decision.is_answerable,
        "confidence": round(decision.score.confidence, 4),
        "threshold_type": decision.threshold.type,
        "reason_code": idk.reason_code if idk else None,
        "message": idk.message if idk else None,
        "suggestions": list(idk.suggestions) if idk and idk.suggestions else None,
    }


def build_citations(results: Sequence[FusedResult]) -> List[Dict[str, Any]]:
    """Numbered citations in evidence order."""
    citations = []
    for number, result in enumerate(results, start=1):
        payload = result.payload
        citations.append(
            {
                "number": number,
                "id": result.id,
                "doc_id": result.doc_id,
                "title": payload.get("title"),
                "url": payload.get("url"),
            }
        )
    return citations


class ResponseBuilder:
    """Fluent builder for CompletedResponse."""

    def __init__(self) -> None:
        self._answer: Optional[str] = None
        self._documents: Optional[List[RetrievedDocument]] = None
        self._decision: Optional[GuardrailDecision] = None
        self._citations: List[Dict[str, Any]] = []
        self._metrics: Optional[Dict[str, Any]] = None

    def answer(self, text: str) -> "ResponseBuilder":
        self._answer = text
        return self

    def retrieved_documents(self, results: Sequence[FusedResult]) -> "ResponseBuilder":
        self._documents = [RetrievedDocument.from_result(r) for r in results]
        return self

    def guardrail_decision(self, decision: GuardrailDecision) -> "ResponseBuilder":
        self._decision = decision
        return self

    def citations(self, citations: Sequence[Dict[str, Any]]) -> "ResponseBuilder":
        self._citations = list(citations)
        return self

    def metrics(self, metrics: Optional[Dict[str, Any]]) -> "ResponseBuilder":
        self._metrics = metrics
        return self

    def build(self) -> CompletedResponse:
        """
        Raises:
            ResponseBuildError: If a mandatory field was never set
        """
        missing = [
            name
            for name, value in (
                ("answer", self._answer),
                ("retrieved_documents", self._documents),
                ("guardrail_decision", self._decision),
            )
            if value is None
        ]
        if missing:
            raise ResponseBuildError(
                f"response is missing mandatory fields: {', '.join(missing)}",
                details={"missing": missing},
            )
        return CompletedResponse(
            answer=self._answer,
            retrieved_documents=self._documents,
            guardrail_decision=self._decision,
            citations=self._citations,
            metrics=self._metrics,
        )
