"""
Unit tests for query intent classification and the intent weighting table.
"""

import pytest

from src.query.intent import QueryIntent, QueryIntentClassifier
from src.shared.config import IntentConfigSection, IntentProfile


@pytest.fixture
def classifier():
    return QueryIntentClassifier(IntentConfigSection())


class TestClassify:
    @pytest.mark.parametrize(
        "query",
        [
            "What is the default cluster quota?",
            "How many drives does a node hold?",
            "how long does a rebuild take per day",
            "Steps to calculate the stripe width",
        ],
    )
    def test_definition_measurement_procedure(self, classifier, query):
        assert classifier.classify(query) == QueryIntent.DEFINITION_MEASUREMENT_PROCEDURE

    @pytest.mark.parametrize(
        "query",
        ["Who was the project founder?", "Tell me about the Berlin office"],
    )
    def test_entity_lookup(self, classifier, query):
        assert classifier.classify(query) == QueryIntent.ENTITY_LOOKUP

    def test_exploratory_fallback(self, classifier):
        assert classifier.classify("filesystem tiering options") == QueryIntent.EXPLORATORY

    def test_empty_query_is_exploratory(self, classifier):
        assert classifier.classify("") == QueryIntent.EXPLORATORY


class TestIntentTable:
    def test_default_weights(self, classifier):
        cfg = classifier.config_for_intent(QueryIntent.DEFINITION_MEASUREMENT_PROCEDURE)
        assert (cfg.vector_weight, cfg.keyword_weight, cfg.retrieval_k) == (0.3, 0.7, 20)
        assert cfg.fusion_strategy == "rrf"

        cfg = classifier.config_for_intent(QueryIntent.EXPLORATORY)
        assert (cfg.vector_weight, cfg.keyword_weight, cfg.retrieval_k) == (0.7, 0.3, 12)

    def test_measurement_question_leans_on_keywords(self, classifier):
        cfg = classifier.config_for_query("How long is a day in hours?")

        assert cfg.intent == QueryIntent.DEFINITION_MEASUREMENT_PROCEDURE
        assert cfg.keyword_weight == 0.7

    def test_profiles_are_configurable(self):
        section = IntentConfigSection(
            profiles={
                "exploratory": IntentProfile(
                    vector_weight=0.5,
                    keyword_weight=0.5,
                    retrieval_k=30,
                    fusion_strategy="score_weighted_rrf",
                )
            }
        )
        classifier = QueryIntentClassifier(section)

        cfg = classifier.config_for_intent(QueryIntent.EXPLORATORY)
        assert cfg.retrieval_k == 30
        assert cfg.fusion_strategy == "score_weighted_rrf"
        # intents missing from the section keep their defaults
        assert classifier.config_for_intent(QueryIntent.ENTITY_LOOKUP).retrieval_k == 12

    def test_invalid_strategy_rejected(self):
        with pytest.raises(ValueError):
            IntentProfile(
                vector_weight=0.5, keyword_weight=0.5, retrieval_k=5, fusion_strategy="borda"
            )


class TestConfidentVectorShortcut:
    def test_confident_definition_query_switches_to_max_confidence(self, classifier):
        cfg = classifier.config_for_query("What is erasure coding?", top_vector_score=0.85)

        assert cfg.fusion_strategy == "max_confidence"
        assert cfg.fusion_top_k == 3

    def test_low_vector_score_keeps_rrf(self, classifier):
        cfg = classifier.config_for_query("What is erasure coding?", top_vector_score=0.4)

        assert cfg.fusion_strategy == "rrf"
        assert cfg.fusion_top_k is None

    def test_exploratory_never_shortcuts(self, classifier):
        cfg = classifier.config_for_query("tiering options", top_vector_score=0.99)
        assert cfg.fusion_strategy == "rrf"

    def test_missing_vector_score(self, classifier):
        cfg = classifier.config_for_query("What is erasure coding?")
        assert cfg.fusion_strategy == "rrf"

    def test_threshold_is_inclusive(self, classifier):
        cfg = classifier.config_for_query("Who is the maintainer?", top_vector_score=0.70)
        assert cfg.intent == QueryIntent.ENTITY_LOOKUP
        assert cfg.fusion_strategy == "max_confidence"
