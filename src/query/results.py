"""
Result types flowing through the retrieval pipeline.

``SearchResult`` is what a search backend returns and is never modified.
``FusedResult`` is created by rank fusion and then mutated in place by the
later stages of a single request (rerank, answerability bonus, packing).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ResultOrigin(str, Enum):
    VECTOR = "vector"
    KEYWORD = "keyword"


class SearchType(str, Enum):
    HYBRID = "hybrid"
    VECTOR_ONLY = "vector_only"
    KEYWORD_ONLY = "keyword_only"


@dataclass(frozen=True)
class SearchResult:
    """A single hit from a vector or keyword backend."""

    id: str
    raw_score: float
    content: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)
    origin: ResultOrigin = ResultOrigin.VECTOR

    @property
    def doc_id(self) -> str:
        return str(self.payload.get("docId") or self.payload.get("doc_id") or self.id)


@dataclass
class FusedResult:
    """A fused candidate with every score the pipeline assigns to it."""

    id: str
    content: str
    payload: Dict[str, Any]
    fusion_score: float
    search_type: SearchType
    vector_score: Optional[float] = None
    keyword_score: Optional[float] = None
    vector_rank: Optional[int] = None
    keyword_rank: Optional[int] = None
    reranker_score: Optional[float] = None
    answerability_bonus: float = 0.0
    final_score: float = 0.0
    rank: int = 0
    score_ceiling: float = 1.0

    def __post_init__(self):
        if not self.final_score:
            self.final_score = self.fusion_score

    @property
    def relevance(self) -> float:
        """
        ``final_score`` on the [0, 1] scale the guardrail and MMR work in.

        Until a reranker scores the result, its fusion component is divided by
        ``score_ceiling``, the best fusion score attainable in this request.
        Packing bonuses carry over unchanged.
        """
        if self.reranker_score is not None or self.score_ceiling <= 0:
            return self.final_score
        bonus = self.final_score - self.fusion_score
        return self.fusion_score / self.score_ceiling + bonus

    @property
    def doc_id(self) -> str:
        return str(self.payload.get("docId") or self.payload.get("doc_id") or self.id)

