"""
Answerability bonus for context packing.

Chunks that look like they contain an answer (measurements, dates,
definitions, lists, headed sections) get a small bump to ``final_score`` so
they survive novelty selection and the token budget. A larger fixed bonus
applies when a configured direct-answer rule matches both the query shape and
the chunk content.
"""

import re
from typing import Any, Dict, List, Optional, Pattern, Sequence, Tuple

from src.query.results import FusedResult
from src.shared.config import AnswerabilityBonusConfig, DirectAnswerRule
from src.shared.observability import get_logger

logger = get_logger(__name__)

MAX_BASE_BONUS = 0.5

_NUMBER_UNIT = re.compile(
    r"\b\d+(\.\d+)?\s*(days?|hours?|minutes?|seconds?|meters?|feet|foot|inches?|"
    r"pounds?|kg|tons?|percent|%)",
    re.IGNORECASE,
)
_DATE = re.compile(
    r"\b\d{1,2}/\d{1,2}/\d{2,4}|\b\d{4}-\d{2}-\d{2}|"
    r"\b(january|february|march|april|may|june|july|august|september|october|"
    r"november|december)\s+\d{1,2},?\s+\d{4}\b",
    re.IGNORECASE,
)
_DEFINITION = re.compile(
    r"\b(is|are|means|refers to|defined as|represents)\b", re.IGNORECASE
)
_LIST_MARKER = re.compile(r"^\s*[-•*]\s+|^\s*\d+\.\s+", re.MULTILINE)
_QUESTION_WORD = re.compile(r"\b(what|how|when|where|why|who|which)\b", re.IGNORECASE)
_PROPER_NOUN = re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b")

# (pattern, weight) pairs summed into the heuristic score
_CONTENT_FEATURES: List[Tuple[Pattern[str], float]] = [
    (_NUMBER_UNIT, 0.3),
    (_DATE, 0.2),
    (_DEFINITION, 0.25),
    (_LIST_MARKER, 0.15),
    (_QUESTION_WORD, 0.1),
]


class _CompiledRule:
    def __init__(self, rule: DirectAnswerRule):
        self.name = rule.name
        self.query = re.compile(rule.query_pattern, re.IGNORECASE)
        self.content = re.compile(rule.content_pattern, re.IGNORECASE)


class AnswerabilityScorer:
    """Heuristic answer-bearing score plus configurable direct-answer rules."""

    def __init__(self, config: Optional[AnswerabilityBonusConfig] = None):
        config = config or AnswerabilityBonusConfig()
        self.enabled = config.enabled
        self._bonus = 0.0
        self.set_bonus(config.base_bonus)
        self.direct_answer_bonus = config.direct_answer_bonus
        self._rules = [_CompiledRule(r) for r in config.direct_answer_rules]

    @property
    def bonus(self) -> float:
        return self._bonus

    def set_bonus(self, bonus: float) -> None:
        """Update the base bonus, clamped to [0, 0.5]."""
        self._bonus = max(0.0, min(MAX_BASE_BONUS, bonus))

    def score_content(self, content: str, payload: Optional[Dict[str, Any]] = None) -> float:
        """
        Score answer-bearing features of a chunk.

        Returns:
            Heuristic score in [0, 1]
        """
        content = content or ""
        score = sum(weight for pattern, weight in _CONTENT_FEATURES if pattern.search(content))

        proper_nouns = len(_PROPER_NOUN.findall(content))
        if 0 < proper_nouns <= 3:
            score += 0.1

        payload = payload or {}
        if payload.get("header") or payload.get("sectionPath") or payload.get("section_path"):
            score += 0.2

        return min(score, 1.0)

    def direct_answer_rule(self, query: str, content: str) -> Optional[str]:
        """Name of the first direct-answer rule matching query and content."""
        if not query or not content:
            return None
        for rule in self._rules:
            if rule.query.search(query) and rule.content.search(content):
                return rule.name
        return None

    def bonus_for(self, query: Optional[str], result: FusedResult) -> float:
        bonus = self._bonus * self.score_content(result.content, result.payload)
        rule = self.direct_answer_rule(query or "", result.content)
        if rule:
            logger.debug("direct_answer_bonus", result_id=result.id, rule=rule)
            bonus += self.direct_answer_bonus
        return bonus

    def apply(self, query: Optional[str], results: Sequence[FusedResult]) -> List[FusedResult]:
        """
        Add the answerability bonus to each result's ``final_score``.

        Returns:
            Results re-sorted by final score descending, ties broken by id
        """
        if not self.enabled:
            return list(results)

        for result in results:
            bonus = self.bonus_for(query, result)
            result.answerability_bonus = bonus
            result.final_score += bonus

        return sorted(results, key=lambda r: (-r.final_score, r.id))
