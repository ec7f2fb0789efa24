"""Answerability threshold presets and the single-parameter custom threshold."""

from typing import Dict

from src.guardrail.models import AnswerabilityThreshold

STRICT = AnswerabilityThreshold(
    type="strict",
    min_confidence=0.8,
    min_top_score=0.7,
    min_mean_score=0.5,
    max_std_dev=0.3,
    min_result_count=3,
)

MODERATE = AnswerabilityThreshold(
    type="moderate",
    min_confidence=0.6,
    min_top_score=0.5,
    min_mean_score=0.3,
    max_std_dev=0.4,
    min_result_count=2,
)

PERMISSIVE = AnswerabilityThreshold(
    type="permissive",
    min_confidence=0.4,
    min_top_score=0.3,
    min_mean_score=0.2,
    max_std_dev=0.5,
    min_result_count=1,
)

THRESHOLD_PRESETS: Dict[str, AnswerabilityThreshold] = {
    "strict": STRICT,
    "moderate": MODERATE,
    "permissive": PERMISSIVE,
}

LOW_CONFIDENCE_CUTOFF = 0.1
MIN_CONFIDENCE_FLOOR = 0.001


def threshold_presets() -> Dict[str, AnswerabilityThreshold]:
    return dict(THRESHOLD_PRESETS)


def custom_threshold(min_confidence: float) -> AnswerabilityThreshold:
    """
    Derive a full threshold from a single confidence value.

    Very low values (<= 0.1) produce a near-open threshold for sparse or
    weakly scored corpora. Higher values scale the permissive preset's score
    floors proportionally, using 0.4 (permissive min_confidence) as the unit.
    A confidence floor of 0.001 keeps an empty evidence set from passing.
    """
    effective = max(min_confidence, MIN_CONFIDENCE_FLOOR)

    if effective <= LOW_CONFIDENCE_CUTOFF:
        return AnswerabilityThreshold(
            type="custom",
            min_confidence=effective,
            min_top_score=0.01,
            min_mean_score=0.01,
            max_std_dev=1.0,
            min_result_count=1,
        )

    scale = effective / PERMISSIVE.min_confidence
    return AnswerabilityThreshold(
        type="custom",
        min_confidence=effective,
        min_top_score=min(PERMISSIVE.min_top_score * scale, 1.0),
        min_mean_score=min(PERMISSIVE.min_mean_score * scale, 1.0),
        max_std_dev=PERMISSIVE.max_std_dev,
        min_result_count=PERMISSIVE.min_result_count,
    )
