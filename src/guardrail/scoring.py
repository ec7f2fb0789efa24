"""
Answerability confidence scoring.

Pure functions over the relevance of the packed evidence set. Four
estimators (statistical, threshold, ml-features, reranker confidence) are
combined by a weighted ensemble; the reranker estimator only takes part when
the reranker actually ran for the request.
"""

import math
from typing import List, Optional, Sequence, Tuple

from src.guardrail.models import AlgorithmScores, AlgorithmWeights, Percentiles, ScoreStatistics
from src.query.results import FusedResult

ABOVE_THRESHOLD_CUTOFF = 0.5
CONSISTENCY_STD_SCALE = 0.5


def percentile(sorted_scores: Sequence[float], p: float) -> float:
    """Linear interpolation at index ``p * (n - 1)``."""
    if not sorted_scores:
        return 0.0
    index = p * (len(sorted_scores) - 1)
    lower = math.floor(index)
    upper = math.ceil(index)
    if lower == upper:
        return sorted_scores[lower]
    weight = index - lower
    return sorted_scores[lower] * (1 - weight) + sorted_scores[upper] * weight


def compute_statistics(scores: Sequence[float]) -> ScoreStatistics:
    if not scores:
        return ScoreStatistics()

    ordered = sorted(scores)
    n = len(scores)
    mean = sum(scores) / n
    variance = sum((s - mean) ** 2 for s in scores) / n
    return ScoreStatistics(
        mean=mean,
        max=ordered[-1],
        min=ordered[0],
        std_dev=math.sqrt(variance),
        count=n,
        percentiles=Percentiles(
            p25=percentile(ordered, 0.25),
            p50=percentile(ordered, 0.50),
            p75=percentile(ordered, 0.75),
            p90=percentile(ordered, 0.90),
        ),
    )


def statistical_score(stats: ScoreStatistics) -> float:
    if stats.count == 0:
        return 0.0
    consistency = (
        max(0.0, 1 - stats.std_dev / CONSISTENCY_STD_SCALE) if stats.std_dev > 0 else 1.0
    )
    return min(stats.mean, 1.0) * 0.4 + min(stats.max, 1.0) * 0.3 + consistency * 0.3


def above_threshold_ratio(scores: Sequence[float]) -> float:
    if not scores:
        return 0.0
    return sum(1 for s in scores if s > ABOVE_THRESHOLD_CUTOFF) / len(scores)


def threshold_score(top_score: float, ratio_above: float) -> float:
    return min(top_score * 0.7 + ratio_above * 0.3, 1.0)


def vector_keyword_alignment(pairs: Sequence[Tuple[float, float]]) -> float:
    """
    Pearson correlation of (vector, keyword) score pairs mapped to [0, 1].

    Returns 0.5 when there are fewer than two pairs or either side has no
    variance.
    """
    if len(pairs) < 2:
        return 0.5

    n = len(pairs)
    vector_mean = sum(v for v, _ in pairs) / n
    keyword_mean = sum(k for _, k in pairs) / n

    covariance = 0.0
    vector_var = 0.0
    keyword_var = 0.0
    for v, k in pairs:
        dv = v - vector_mean
        dk = k - keyword_mean
        covariance += dv * dk
        vector_var += dv * dv
        keyword_var += dk * dk

    denominator = math.sqrt(vector_var * keyword_var)
    if denominator == 0:
        return 0.5
    r = max(-1.0, min(1.0, covariance / denominator))
    return (r + 1) / 2


def ml_features_score(stats: ScoreStatistics, alignment: float) -> float:
    if stats.count == 0:
        return 0.0
    score_range = stats.max - stats.min
    top_score_ratio = stats.max / (stats.mean + 0.001)
    density = min(stats.count / 10, 1.0)
    return min(
        score_range * 0.2
        + (1 - min(stats.std_dev, 1.0)) * 0.3
        + min(top_score_ratio / 2, 1.0) * 0.3
        + alignment * 0.1
        + density * 0.1,
        1.0,
    )


def reranker_confidence_score(reranker_scores: Sequence[float]) -> float:
    if not reranker_scores:
        return 0.0
    top = max(reranker_scores)
    mean = sum(reranker_scores) / len(reranker_scores)
    return min(top * 0.6 + mean * 0.4, 1.0)


def ensemble_confidence(scores: AlgorithmScores, weights: AlgorithmWeights) -> float:
    """Weighted mean of the estimators that ran, clamped to [0, 1]."""
    total = weights.statistical + weights.threshold + weights.ml_features
    confidence = (
        scores.statistical * weights.statistical
        + scores.threshold * weights.threshold
        + scores.ml_features * weights.ml_features
    )
    if scores.reranker_confidence is not None:
        confidence += scores.reranker_confidence * weights.reranker_confidence
        total += weights.reranker_confidence
    if total <= 0:
        return 0.0
    return max(0.0, min(1.0, confidence / total))


def algorithm_scores_for(
    stats: ScoreStatistics,
    ratio_above: float,
    alignment: float = 0.5,
    reranker_scores: Optional[Sequence[float]] = None,
) -> AlgorithmScores:
    """Estimator outputs from summary statistics alone."""
    return AlgorithmScores(
        statistical=statistical_score(stats),
        threshold=threshold_score(stats.max, ratio_above) if stats.count else 0.0,
        ml_features=ml_features_score(stats, alignment),
        reranker_confidence=(
            reranker_confidence_score(reranker_scores)
            if reranker_scores is not None
            else None
        ),
    )


def score_results(
    results: Sequence[FusedResult],
    weights: AlgorithmWeights,
    reranking_applied: bool = False,
) -> Tuple[ScoreStatistics, AlgorithmScores, float]:
    """
    Score an evidence set.

    Returns:
        (statistics, per-estimator scores, ensemble confidence)
    """
    relevances: List[float] = [r.relevance for r in results]
    stats = compute_statistics(relevances)

    pairs = [
        (r.vector_score, r.keyword_score)
        for r in results
        if r.vector_score is not None and r.keyword_score is not None
    ]
    reranker_scores = None
    if reranking_applied:
        reranker_scores = [
            r.reranker_score for r in results if r.reranker_score is not None
        ] or None

    algorithms = algorithm_scores_for(
        stats,
        above_threshold_ratio(relevances),
        alignment=vector_keyword_alignment(pairs),
        reranker_scores=reranker_scores,
    )
    return stats, algorithms, ensemble_confidence(algorithms, weights)


def score_reasoning(stats: ScoreStatistics, algorithms: AlgorithmScores) -> str:
    if stats.count == 0:
        return "No retrieval results"

    reasons = []
    if stats.mean < 0.3:
        reasons.append("Low mean score")
    if stats.max < 0.5:
        reasons.append("Low maximum score")
    if stats.std_dev > 0.4:
        reasons.append("High score variance")
    if algorithms.statistical < 0.5:
        reasons.append("Poor statistical confidence")
    return ", ".join(reasons) if reasons else "Sufficient confidence in results"
