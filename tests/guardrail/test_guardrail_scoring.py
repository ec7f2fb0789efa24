"""
Unit tests for answerability scoring functions and threshold presets.
"""

import pytest

from conftest import fused_result
from src.guardrail.models import AlgorithmScores, AlgorithmWeights, ScoreStatistics
from src.guardrail.scoring import (
    algorithm_scores_for,
    compute_statistics,
    ensemble_confidence,
    percentile,
    score_reasoning,
    score_results,
    vector_keyword_alignment,
)
from src.guardrail.thresholds import PERMISSIVE, STRICT, custom_threshold, threshold_presets


class TestStatistics:
    def test_compute_statistics(self):
        stats = compute_statistics([0.2, 0.4, 0.6, 0.8])

        assert stats.mean == pytest.approx(0.5)
        assert stats.max == 0.8
        assert stats.min == 0.2
        assert stats.count == 4
        # population standard deviation
        assert stats.std_dev == pytest.approx(0.2236, abs=1e-4)
        assert stats.percentiles.p50 == pytest.approx(0.5)
        assert stats.percentiles.p25 == pytest.approx(0.35)

    def test_empty(self):
        stats = compute_statistics([])
        assert stats.count == 0
        assert stats.mean == 0.0

    def test_percentile_interpolates(self):
        assert percentile([1.0, 2.0], 0.5) == pytest.approx(1.5)
        assert percentile([3.0], 0.9) == 3.0
        assert percentile([], 0.5) == 0.0


class TestAlignment:
    def test_perfect_correlation(self):
        assert vector_keyword_alignment([(0.1, 1.0), (0.5, 5.0), (0.9, 9.0)]) == pytest.approx(1.0)

    def test_inverse_correlation(self):
        assert vector_keyword_alignment([(0.1, 9.0), (0.9, 1.0)]) == pytest.approx(0.0)

    def test_too_few_pairs_or_no_variance(self):
        assert vector_keyword_alignment([(0.5, 3.0)]) == 0.5
        assert vector_keyword_alignment([(0.5, 3.0), (0.5, 4.0)]) == 0.5


class TestEnsemble:
    def test_two_strong_results_are_confident(self):
        results = [fused_result("a", 0.92), fused_result("b", 0.87)]

        stats, algorithms, confidence = score_results(results, AlgorithmWeights())

        assert stats.count == 2
        assert algorithms.reranker_confidence is None
        assert confidence == pytest.approx(0.84, abs=0.01)

    def test_rank_fusion_scores_read_on_relevance_scale(self):
        results = [
            fused_result("a", 1 / 61, score_ceiling=1 / 61),
            fused_result("b", 1 / 62, score_ceiling=1 / 61),
        ]

        stats, _, confidence = score_results(results, AlgorithmWeights())

        assert stats.max == pytest.approx(1.0)
        assert stats.mean == pytest.approx((1 + 61 / 62) / 2)
        assert confidence > 0.6

    def test_reranker_term_only_when_reranking_applied(self):
        results = [
            fused_result("a", 0.92, reranker_score=0.92),
            fused_result("b", 0.87, reranker_score=0.87),
        ]

        _, without, _ = score_results(results, AlgorithmWeights(), reranking_applied=False)
        _, with_reranker, _ = score_results(results, AlgorithmWeights(), reranking_applied=True)

        assert without.reranker_confidence is None
        assert with_reranker.reranker_confidence == pytest.approx(0.92 * 0.6 + 0.895 * 0.4)

    def test_weights_renormalized_without_reranker(self):
        scores = AlgorithmScores(statistical=0.5, threshold=0.5, ml_features=0.5)
        assert ensemble_confidence(scores, AlgorithmWeights()) == pytest.approx(0.5)

    def test_confidence_clamped(self):
        scores = AlgorithmScores(
            statistical=2.0, threshold=2.0, ml_features=2.0, reranker_confidence=2.0
        )
        assert ensemble_confidence(scores, AlgorithmWeights()) == 1.0

    def test_zero_weights(self):
        scores = AlgorithmScores(statistical=0.9, threshold=0.9, ml_features=0.9)
        weights = AlgorithmWeights(
            statistical=0.0, threshold=0.0, ml_features=0.0, reranker_confidence=0.0
        )
        assert ensemble_confidence(scores, weights) == 0.0

    @pytest.mark.parametrize("reranker_scores", [None, [0.6, 0.4]])
    def test_confidence_monotonic_in_top_score(self, reranker_scores):
        """Raising the top score with mean, spread and count fixed never lowers confidence."""
        weights = AlgorithmWeights()
        previous = -1.0
        for top in [0.5 + step * 0.05 for step in range(11)]:
            stats = ScoreStatistics(mean=0.45, max=top, min=0.3, std_dev=0.1, count=5)
            algorithms = algorithm_scores_for(
                stats, ratio_above=0.4, reranker_scores=reranker_scores
            )
            confidence = ensemble_confidence(algorithms, weights)
            assert confidence >= previous
            previous = confidence

    def test_empty_results_score_zero(self):
        stats, algorithms, confidence = score_results([], AlgorithmWeights())

        assert stats.count == 0
        assert confidence == 0.0
        assert score_reasoning(stats, algorithms) == "No retrieval results"


class TestThresholds:
    def test_presets(self):
        presets = threshold_presets()

        assert set(presets) == {"strict", "moderate", "permissive"}
        assert presets["strict"] == STRICT
        assert STRICT.min_result_count == 3
        assert PERMISSIVE.min_confidence == 0.4

    def test_custom_threshold_scales_permissive(self):
        threshold = custom_threshold(0.6)

        assert threshold.type == "custom"
        assert threshold.min_confidence == 0.6
        assert threshold.min_top_score == pytest.approx(0.45)
        assert threshold.min_mean_score == pytest.approx(0.3)
        assert threshold.max_std_dev == 0.5
        assert threshold.min_result_count == 1

    def test_custom_threshold_at_full_confidence(self):
        threshold = custom_threshold(1.0)
        assert threshold.min_top_score == pytest.approx(0.75)
        assert threshold.min_mean_score == pytest.approx(0.5)

    def test_low_custom_threshold_is_near_open(self):
        threshold = custom_threshold(0.05)

        assert threshold.min_confidence == 0.05
        assert threshold.min_top_score == 0.01
        assert threshold.max_std_dev == 1.0

    def test_zero_custom_threshold_keeps_floor(self):
        assert custom_threshold(0.0).min_confidence == 0.001
