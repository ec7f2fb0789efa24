"""
Unit tests for rank fusion.

Covers the RRF arithmetic, tie-breaking, score-based strategies and the
max-confidence top-k cut.
"""

import pytest

from conftest import keyword_hit, vector_hit
from src.query.fusion import fuse, normalize_scores
from src.query.intent import IntentConfig, QueryIntent
from src.query.results import SearchType
from src.shared.errors import InternalScoringError


def intent(strategy="rrf", vector_weight=1.0, keyword_weight=1.0, top_k=None):
    return IntentConfig(
        intent=QueryIntent.EXPLORATORY,
        vector_weight=vector_weight,
        keyword_weight=keyword_weight,
        retrieval_k=10,
        fusion_strategy=strategy,
        fusion_top_k=top_k,
    )


class TestReciprocalRankFusion:
    """Tests for the default RRF strategy."""

    def test_document_first_in_both_lists(self):
        """Rank 1 in both lists with unit weights scores 2/61."""
        fused = fuse(
            [vector_hit("a", 0.9), vector_hit("b", 0.5)],
            [keyword_hit("a", 12.0), keyword_hit("c", 3.0)],
            intent(),
        )

        assert fused[0].id == "a"
        assert fused[0].fusion_score == pytest.approx(2 / 61)
        assert fused[0].search_type == SearchType.HYBRID
        assert fused[0].vector_rank == 1
        assert fused[0].keyword_rank == 1

    def test_single_list_document_gets_weight_over_k_plus_rank(self):
        """A document present in one list contributes only that list's term."""
        fused = fuse(
            [vector_hit("a", 0.9)],
            [keyword_hit("b", 5.0)],
            intent(vector_weight=0.7, keyword_weight=0.3),
        )
        by_id = {r.id: r for r in fused}

        assert by_id["a"].fusion_score == pytest.approx(0.7 / 61)
        assert by_id["b"].fusion_score == pytest.approx(0.3 / 61)
        assert by_id["a"].search_type == SearchType.VECTOR_ONLY
        assert by_id["b"].search_type == SearchType.KEYWORD_ONLY

    def test_custom_k(self):
        fused = fuse([vector_hit("a", 0.9)], [], intent(), k=10)
        assert fused[0].fusion_score == pytest.approx(1 / 11)

    def test_sorted_descending_with_ids_breaking_ties(self):
        """Equal fused scores are ordered by id."""
        fused = fuse(
            [vector_hit("a", 0.9), vector_hit("z", 0.5)],
            [keyword_hit("a", 12.0), keyword_hit("m", 3.0)],
            intent(),
        )

        assert [r.id for r in fused] == ["a", "m", "z"]
        assert [r.rank for r in fused] == [1, 2, 3]
        scores = [r.fusion_score for r in fused]
        assert scores == sorted(scores, reverse=True)

    def test_fusion_is_deterministic(self):
        vectors = [vector_hit(f"v{i}", 1 - i * 0.1) for i in range(5)]
        keywords = [keyword_hit(f"v{4 - i}", 10 - i) for i in range(5)]

        first = [(r.id, r.fusion_score) for r in fuse(vectors, keywords, intent())]
        second = [(r.id, r.fusion_score) for r in fuse(vectors, keywords, intent())]

        assert first == second

    def test_duplicate_ids_keep_best_rank(self):
        fused = fuse(
            [vector_hit("a", 0.9), vector_hit("a", 0.1), vector_hit("b", 0.5)],
            [],
            intent(),
        )

        assert [r.id for r in fused] == ["a", "b"]
        assert fused[1].vector_rank == 2

    def test_final_score_starts_at_fusion_score(self):
        fused = fuse([vector_hit("a", 0.9)], [keyword_hit("a", 2.0)], intent())
        assert fused[0].final_score == fused[0].fusion_score

    def test_keyword_content_and_payload_merge(self):
        fused = fuse(
            [vector_hit("a", 0.9, "vector text", title="From vector")],
            [keyword_hit("a", 2.0, "keyword text", url="https://docs/a")],
            intent(),
        )

        assert fused[0].content == "keyword text"
        assert fused[0].payload == {"title": "From vector", "url": "https://docs/a"}

    def test_empty_inputs(self):
        assert fuse([], [], intent()) == []


class TestScoreBasedStrategies:
    """Tests for strategies that use normalized scores."""

    def test_max_confidence_respects_top_k(self):
        vectors = [vector_hit(f"v{i}", 0.9 - i * 0.1) for i in range(6)]
        fused = fuse(vectors, [], intent(strategy="max_confidence", top_k=3))

        assert [r.id for r in fused] == ["v0", "v1", "v2"]
        assert fused[0].fusion_score == pytest.approx(1.0)

    def test_weighted_average(self):
        fused = fuse(
            [vector_hit("a", 0.9), vector_hit("b", 0.1)],
            [keyword_hit("b", 8.0), keyword_hit("a", 2.0)],
            intent(strategy="weighted_average", vector_weight=0.7, keyword_weight=0.3),
        )
        by_id = {r.id: r for r in fused}

        assert by_id["a"].fusion_score == pytest.approx(0.7)
        assert by_id["b"].fusion_score == pytest.approx(0.3)

    def test_unknown_strategy_raises(self):
        with pytest.raises(InternalScoringError):
            fuse([vector_hit("a", 0.9)], [], intent(strategy="borda"))

    def test_non_positive_k_raises(self):
        with pytest.raises(InternalScoringError):
            fuse([vector_hit("a", 0.9)], [], intent(), k=0)


class TestRelevance:
    """Fused scores mapped onto [0, 1] for the guardrail and MMR."""

    def test_top_of_both_lists_is_fully_relevant(self):
        fused = fuse(
            [vector_hit("a", 0.9), vector_hit("b", 0.8)],
            [keyword_hit("a", 12.0)],
            intent(vector_weight=0.7, keyword_weight=0.3),
        )
        by_id = {r.id: r for r in fused}

        assert by_id["a"].score_ceiling == pytest.approx(1 / 61)
        assert by_id["a"].relevance == pytest.approx(1.0)
        assert by_id["b"].relevance == pytest.approx(0.7 * 61 / 62)
        # ordering still follows the raw fusion score
        assert by_id["a"].fusion_score == pytest.approx(1 / 61)

    def test_ceiling_ignores_a_list_without_hits(self):
        fused = fuse([vector_hit("a", 0.9)], [], intent(vector_weight=0.7, keyword_weight=0.3))

        assert fused[0].relevance == pytest.approx(1.0)

    def test_score_based_strategies_keep_their_scale(self):
        fused = fuse(
            [vector_hit("a", 0.9), vector_hit("b", 0.1)],
            [],
            intent(strategy="weighted_average", vector_weight=0.7, keyword_weight=0.3),
        )

        assert fused[0].score_ceiling == 1.0
        assert fused[0].relevance == pytest.approx(fused[0].fusion_score)

    def test_reranker_score_is_used_as_is(self):
        fused = fuse([vector_hit("a", 0.9)], [], intent())
        fused[0].reranker_score = 0.4
        fused[0].final_score = 0.45

        assert fused[0].relevance == pytest.approx(0.45)

    def test_packing_bonus_carries_over(self):
        fused = fuse([vector_hit("a", 0.9)], [], intent())
        fused[0].final_score += 0.05

        assert fused[0].relevance == pytest.approx(1.05)


class TestNormalizeScores:
    def test_minmax(self):
        assert normalize_scores([2.0, 4.0, 6.0], "minmax") == [0.0, 0.5, 1.0]

    def test_single_score_maps_to_half(self):
        assert normalize_scores([7.0], "minmax") == [0.5]

    def test_no_spread_maps_to_half(self):
        assert normalize_scores([3.0, 3.0], "zscore") == [0.5, 0.5]

    def test_none_passes_through(self):
        assert normalize_scores([3.0, 1.0], "none") == [3.0, 1.0]

    def test_unknown_method_raises(self):
        with pytest.raises(InternalScoringError):
            normalize_scores([1.0, 2.0], "rank")
