"""
Rank fusion of vector and keyword result lists.

RRF formula: score = sum over lists of weight / (k + rank)
where k is a constant (default 60) and rank is the 1-based position in the
list. A result missing from a list contributes nothing for that list.

Reference: Cormack et al. "Reciprocal Rank Fusion outperforms Condorcet
and individual Rank Learning Methods"

Score-based strategies (weighted_average, score_weighted_rrf,
max_confidence) normalize each list before combining, because BM25 and
cosine scores live on different scales.
"""

import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from src.query.intent import IntentConfig
from src.query.results import FusedResult, SearchResult, SearchType
from src.shared.errors import InternalScoringError
from src.shared.observability import get_logger
from src.shared.observability.metrics import fusion_candidates_total

logger = get_logger(__name__)

DEFAULT_RRF_K = 60


@dataclass
class _Entry:
    result: SearchResult
    rank: int
    normalized: float


def _dedupe(results: Sequence[SearchResult]) -> List[SearchResult]:
    """Keep the first (best ranked) occurrence of each id."""
    seen = set()
    unique: List[SearchResult] = []
    for r in results:
        if r.id in seen:
            continue
        seen.add(r.id)
        unique.append(r)
    return unique


def normalize_scores(scores: Sequence[float], method: str) -> List[float]:
    """
    Normalize a list of scores.

    A single score, or a list with no spread, maps every item to 0.5.
    """
    if method == "none":
        return list(scores)
    if not scores:
        return []
    if len(scores) == 1:
        return [0.5]

    if method == "minmax":
        lo, hi = min(scores), max(scores)
        spread = hi - lo
        if spread == 0:
            return [0.5] * len(scores)
        return [(s - lo) / spread for s in scores]

    if method == "zscore":
        mean = sum(scores) / len(scores)
        std = math.sqrt(sum((s - mean) ** 2 for s in scores) / len(scores))
        if std == 0:
            return [0.5] * len(scores)
        return [(s - mean) / std for s in scores]

    raise InternalScoringError(f"Unknown normalization method: {method}")


def _index(results: Sequence[SearchResult], normalization: str) -> Dict[str, _Entry]:
    unique = _dedupe(results)
    normalized = normalize_scores([r.raw_score for r in unique], normalization)
    return {
        r.id: _Entry(result=r, rank=i + 1, normalized=normalized[i])
        for i, r in enumerate(unique)
    }


def _rrf(v: Optional[_Entry], kw: Optional[_Entry], cfg: IntentConfig, k: int) -> float:
    score = 0.0
    if v is not None:
        score += cfg.vector_weight / (k + v.rank)
    if kw is not None:
        score += cfg.keyword_weight / (k + kw.rank)
    return score


def _score_weighted_rrf(
    v: Optional[_Entry], kw: Optional[_Entry], cfg: IntentConfig, k: int
) -> float:
    score = 0.0
    if v is not None:
        score += cfg.vector_weight * v.normalized / (k + v.rank)
    if kw is not None:
        score += cfg.keyword_weight * kw.normalized / (k + kw.rank)
    return score


def _weighted_average(
    v: Optional[_Entry], kw: Optional[_Entry], cfg: IntentConfig, k: int
) -> float:
    score = 0.0
    if v is not None:
        score += cfg.vector_weight * v.normalized
    if kw is not None:
        score += cfg.keyword_weight * kw.normalized
    return score


def _max_confidence(
    v: Optional[_Entry], kw: Optional[_Entry], cfg: IntentConfig, k: int
) -> float:
    candidates = [e.normalized for e in (v, kw) if e is not None]
    return max(candidates) if candidates else 0.0


_RANK_STRATEGIES = {"rrf", "score_weighted_rrf"}

_STRATEGIES: Dict[str, Callable[..., float]] = {
    "rrf": _rrf,
    "score_weighted_rrf": _score_weighted_rrf,
    "weighted_average": _weighted_average,
    "max_confidence": _max_confidence,
}


def score_ceiling(
    cfg: IntentConfig, k: int, has_vector: bool, has_keyword: bool
) -> float:
    """
    Best fusion score attainable for this request.

    For the rank-based strategies that is a result ranked first in every list
    that returned hits. Score-based strategies are already on a [0, 1] scale.
    """
    if cfg.fusion_strategy not in _RANK_STRATEGIES:
        return 1.0
    weight = 0.0
    if has_vector:
        weight += cfg.vector_weight
    if has_keyword:
        weight += cfg.keyword_weight
    if weight <= 0:
        return 1.0
    return weight / (k + 1)


def _search_type(v: Optional[_Entry], kw: Optional[_Entry]) -> SearchType:
    if v is not None and kw is not None:
        return SearchType.HYBRID
    if v is not None:
        return SearchType.VECTOR_ONLY
    return SearchType.KEYWORD_ONLY


def _content(v: Optional[_Entry], kw: Optional[_Entry]) -> str:
    for entry in (kw, v):
        if entry is not None and entry.result.content:
            return entry.result.content
    for entry in (kw, v):
        if entry is not None:
            content = entry.result.payload.get("content")
            if content:
                return str(content)
    return ""


def fuse(
    vector_results: Sequence[SearchResult],
    keyword_results: Sequence[SearchResult],
    intent_config: IntentConfig,
    k: int = DEFAULT_RRF_K,
    normalization: str = "minmax",
) -> List[FusedResult]:
    """
    Merge two ranked lists into one fused ranking.

    Args:
        vector_results: Vector hits in backend rank order
        keyword_results: Keyword hits in backend rank order (may be empty)
        intent_config: Weights and strategy for this query
        k: RRF constant
        normalization: Score normalization for score-based strategies

    Returns:
        Fused results sorted by fusion score descending, ties broken by id.
        ``final_score`` equals ``fusion_score`` and ranks start at 1. Every
        result carries the request's ``score_ceiling``.

    Raises:
        InternalScoringError: If the strategy or normalization is unknown
    """
    strategy = _STRATEGIES.get(intent_config.fusion_strategy)
    if strategy is None:
        raise InternalScoringError(
            f"Unknown fusion strategy: {intent_config.fusion_strategy}"
        )
    if k <= 0:
        raise InternalScoringError(f"RRF constant must be positive, got {k}")

    vectors = _index(vector_results, normalization)
    keywords = _index(keyword_results, normalization)

    # Preserve first-seen id order before sorting so ties stay reproducible
    all_ids: List[str] = list(vectors)
    all_ids.extend(i for i in keywords if i not in vectors)
    ceiling = score_ceiling(intent_config, k, bool(vectors), bool(keywords))

    fused: List[FusedResult] = []
    for result_id in all_ids:
        v = vectors.get(result_id)
        kw = keywords.get(result_id)
        score = strategy(v, kw, intent_config, k)

        payload: Dict = {}
        if v is not None:
            payload.update(v.result.payload)
        if kw is not None:
            payload.update(kw.result.payload)

        fused.append(
            FusedResult(
                id=result_id,
                content=_content(v, kw),
                payload=payload,
                fusion_score=score,
                final_score=score,
                search_type=_search_type(v, kw),
                vector_score=v.result.raw_score if v is not None else None,
                keyword_score=kw.result.raw_score if kw is not None else None,
                vector_rank=v.rank if v is not None else None,
                keyword_rank=kw.rank if kw is not None else None,
                score_ceiling=ceiling,
            )
        )

    fused.sort(key=lambda r: (-r.fusion_score, r.id))
    if intent_config.fusion_top_k:
        fused = fused[: intent_config.fusion_top_k]
    for i, r in enumerate(fused):
        r.rank = i + 1

    fusion_candidates_total.labels(strategy=intent_config.fusion_strategy).observe(
        len(fused)
    )
    logger.debug(
        "fusion_complete",
        strategy=intent_config.fusion_strategy,
        vector_count=len(vectors),
        keyword_count=len(keywords),
        fused_count=len(fused),
    )
    return fused
