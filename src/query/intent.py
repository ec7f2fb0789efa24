"""
Query intent classification for adaptive hybrid weighting.

Measurement, definition and procedure questions lean on exact keyword
matches; entity lookups and open-ended questions lean on vector similarity.
"""

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional

from src.shared.config import IntentConfigSection, IntentProfile
from src.shared.observability import get_logger

logger = get_logger(__name__)


class QueryIntent(str, Enum):
    DEFINITION_MEASUREMENT_PROCEDURE = "definition_measurement_procedure"
    ENTITY_LOOKUP = "entity_lookup"
    EXPLORATORY = "exploratory"


_DEFINITION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\b(what is|what does|what are|how does|explain|define)\b",
        r"\b(how long|how much|how many|how tall|how wide|how deep)\b",
        r"\b(what's the|whats the)\b",
        r"\b(calculate|compute|measure|steps to|procedure for)\b",
        r"\b(algorithm|method|process|technique)\b",
    )
]

_ENTITY_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\b(who|what|where) (is|was|are|were)\b",
        r"\b(tell me about|information on|details about)\b",
        r"\b(history of|origin of|background on)\b",
    )
]

_SHORTCUT_INTENTS = {
    QueryIntent.DEFINITION_MEASUREMENT_PROCEDURE,
    QueryIntent.ENTITY_LOOKUP,
}


@dataclass(frozen=True)
class IntentConfig:
    """Retrieval settings derived from one query."""

    intent: QueryIntent
    vector_weight: float
    keyword_weight: float
    retrieval_k: int
    fusion_strategy: str
    fusion_top_k: Optional[int] = None
    expanded_query: Optional[str] = None


class QueryIntentClassifier:
    """Pattern-based intent classifier with a per-intent weighting table."""

    def __init__(self, config: Optional[IntentConfigSection] = None):
        config = config or IntentConfigSection()
        defaults = IntentConfigSection().profiles
        self._profiles: Dict[QueryIntent, IntentProfile] = {
            intent: config.profiles.get(intent.value, defaults[intent.value])
            for intent in QueryIntent
        }
        self._shortcut_threshold = config.high_confidence_threshold
        self._shortcut_top_k = config.high_confidence_top_k

    def classify(self, query: str) -> QueryIntent:
        q = (query or "").lower()

        if any(p.search(q) for p in _DEFINITION_PATTERNS):
            return QueryIntent.DEFINITION_MEASUREMENT_PROCEDURE
        if any(p.search(q) for p in _ENTITY_PATTERNS):
            return QueryIntent.ENTITY_LOOKUP
        return QueryIntent.EXPLORATORY

    def config_for_intent(self, intent: QueryIntent) -> IntentConfig:
        profile = self._profiles[intent]
        return IntentConfig(
            intent=intent,
            vector_weight=profile.vector_weight,
            keyword_weight=profile.keyword_weight,
            retrieval_k=profile.retrieval_k,
            fusion_strategy=profile.fusion_strategy,
        )

    def config_for_query(
        self, query: str, top_vector_score: Optional[float] = None
    ) -> IntentConfig:
        """
        Classify ``query`` and return its retrieval config.

        A confident top vector hit on a definition or entity question switches
        fusion to max-confidence over the top few candidates.
        """
        intent = self.classify(query)
        config = self.config_for_intent(intent)

        if (
            top_vector_score is not None
            and top_vector_score >= self._shortcut_threshold
            and intent in _SHORTCUT_INTENTS
        ):
            config = replace(
                config,
                fusion_strategy="max_confidence",
                fusion_top_k=self._shortcut_top_k,
            )

        logger.debug(
            "query_intent_classified",
            intent=intent.value,
            vector_weight=config.vector_weight,
            keyword_weight=config.keyword_weight,
            fusion_strategy=config.fusion_strategy,
            top_vector_score=top_vector_score,
        )
        return config
