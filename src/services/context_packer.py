"""
Context packer: turns ranked candidates into the evidence set sent to the
guardrail and the generator.

Passes, in order:
    1. per-document cap (at most ``per_doc_cap`` chunks per docId)
    2. answerability bonus
    3. novelty (MMR) selection
    4. token budget
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from src.providers.embeddings import EmbeddingProvider
from src.providers.tokenizer_service import TokenizerService
from src.query.results import FusedResult
from src.services.answerability_bonus import AnswerabilityScorer
from src.services.context_budget_manager import ContextBudgetManager
from src.services.novelty import NoveltySelector
from src.shared.config import ContextConfig
from src.shared.observability import get_logger

logger = get_logger(__name__)

DROP_PER_DOC_CAP = "per_doc_cap"
DROP_MMR = "mmr_not_selected"
DROP_TOKEN_BUDGET = "token_budget"


@dataclass
class PackingTrace:
    """Record of what the packer kept and why the rest was dropped."""

    selected_ids: List[str] = field(default_factory=list)
    token_counts: Dict[str, int] = field(default_factory=dict)
    scores: Dict[str, float] = field(default_factory=dict)
    novelty_scores: Dict[str, float] = field(default_factory=dict)
    dropped: Dict[str, str] = field(default_factory=dict)
    truncated_ids: List[str] = field(default_factory=list)
    total_tokens: int = 0
    similarity: str = "none"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected_ids": list(self.selected_ids),
            "token_counts": dict(self.token_counts),
            "scores": dict(self.scores),
            "novelty_scores": dict(self.novelty_scores),
            "dropped": dict(self.dropped),
            "truncated_ids": list(self.truncated_ids),
            "total_tokens": self.total_tokens,
            "similarity": self.similarity,
        }


@dataclass
class PackedContext:
    results: List[FusedResult]
    trace: PackingTrace

    @property
    def text(self) -> str:
        return "\n\n".join(r.content for r in self.results)


def apply_per_doc_cap(
    results: Sequence[FusedResult], cap: int
) -> tuple[List[FusedResult], List[str]]:
    """Keep at most ``cap`` results per document, preserving order."""
    seen: Dict[str, int] = defaultdict(int)
    kept: List[FusedResult] = []
    dropped: List[str] = []
    for result in results:
        if seen[result.doc_id] >= cap:
            dropped.append(result.id)
            continue
        seen[result.doc_id] += 1
        kept.append(result)
    return kept, dropped


class ContextPacker:
    def __init__(
        self,
        config: Optional[ContextConfig] = None,
        tokenizer: Optional[TokenizerService] = None,
        embedder: Optional[EmbeddingProvider] = None,
        embedding_timeout_ms: float = 5000,
    ):
        self.config = config or ContextConfig()
        self.scorer = AnswerabilityScorer(self.config.answerability)
        self.selector = NoveltySelector(
            self.config.novelty,
            embedder=embedder,
            embedding_timeout_ms=embedding_timeout_ms,
        )
        self.budget = ContextBudgetManager.from_config(self.config.budget, tokenizer)

    async def pack(
        self,
        query: str,
        results: Sequence[FusedResult],
        max_results: Optional[int] = None,
    ) -> PackedContext:
        trace = PackingTrace()

        capped, cap_dropped = apply_per_doc_cap(results, self.config.per_doc_cap)
        for result_id in cap_dropped:
            trace.dropped[result_id] = DROP_PER_DOC_CAP

        scored = self.scorer.apply(query, capped)

        selection = await self.selector.select(scored, target=max_results)
        trace.similarity = selection.similarity
        trace.novelty_scores = dict(selection.novelty_scores)
        for result_id in selection.not_selected:
            trace.dropped[result_id] = DROP_MMR

        outcome = self.budget.fit(selection.selected)
        for result_id in outcome.dropped:
            trace.dropped[result_id] = DROP_TOKEN_BUDGET

        packed = outcome.results
        for rank, result in enumerate(packed, start=1):
            result.rank = rank
        for item in outcome.kept:
            trace.selected_ids.append(item.result.id)
            trace.token_counts[item.result.id] = item.tokens
            trace.scores[item.result.id] = item.result.final_score
        trace.truncated_ids = outcome.truncated_ids
        trace.total_tokens = outcome.tokens_used

        logger.info(
            "context_packed",
            candidates=len(results),
            selected=len(packed),
            dropped=len(trace.dropped),
            total_tokens=trace.total_tokens,
            similarity=trace.similarity,
        )
        return PackedContext(results=packed, trace=trace)
