"""IDK ("I don't know") response templates and fallback suggestions."""

from typing import List, Optional, Sequence

from src.guardrail.models import (
    AnswerabilityScore,
    FallbackConfig,
    IdkResponse,
    IdkResponseTemplate,
)
from src.query.results import FusedResult

NO_RELEVANT_DOCS = "NO_RELEVANT_DOCS"
LOW_CONFIDENCE = "LOW_CONFIDENCE"
AMBIGUOUS_QUERY = "AMBIGUOUS_QUERY"
OUTSIDE_DOMAIN = "OUTSIDE_DOMAIN"
INTERNAL_ERROR = "INTERNAL_ERROR"

GENERIC_SUGGESTION = "Consider refining your query to be more specific"

DEFAULT_IDK_TEMPLATES: List[IdkResponseTemplate] = [
    IdkResponseTemplate(
        id="insufficient_confidence",
        reason_code=LOW_CONFIDENCE,
        template=(
            "I don't have enough confidence in the available information to "
            "provide a reliable answer to your question."
        ),
        include_suggestions=True,
    ),
    IdkResponseTemplate(
        id="no_relevant_results",
        reason_code=NO_RELEVANT_DOCS,
        template=(
            "I couldn't find relevant information in the knowledge base to "
            "answer your question."
        ),
        include_suggestions=True,
    ),
    IdkResponseTemplate(
        id="ambiguous_query",
        reason_code=AMBIGUOUS_QUERY,
        template=(
            "Your question is ambiguous or too broad. Could you please provide "
            "more specific details?"
        ),
        include_suggestions=False,
    ),
    IdkResponseTemplate(
        id="outside_domain",
        reason_code=OUTSIDE_DOMAIN,
        template=(
            "This question appears to be outside the scope of the available "
            "knowledge base."
        ),
        include_suggestions=False,
    ),
]

INTERNAL_ERROR_MESSAGE = (
    "I'm unable to evaluate the available information right now. "
    "Please try again later."
)


def _find(templates: Sequence[IdkResponseTemplate], reason_code: str) -> IdkResponseTemplate:
    for template in templates:
        if template.reason_code == reason_code:
            return template
    return templates[0]


def select_template(
    score: AnswerabilityScore,
    templates: Optional[Sequence[IdkResponseTemplate]] = None,
) -> IdkResponseTemplate:
    """Pick the template matching the most likely cause of the refusal."""
    templates = templates or DEFAULT_IDK_TEMPLATES
    stats = score.score_stats

    if stats.count == 0:
        return _find(templates, NO_RELEVANT_DOCS)
    if score.confidence < 0.3:
        return _find(templates, LOW_CONFIDENCE)
    if stats.std_dev > 0.4:
        return _find(templates, AMBIGUOUS_QUERY)
    return _find(templates, LOW_CONFIDENCE)


def _first_sentence(content: str) -> str:
    return (content or "").split(".")[0].strip()


def generate_suggestions(
    results: Sequence[FusedResult], fallback: Optional[FallbackConfig]
) -> List[str]:
    """
    Suggest follow-up phrasings from the best-scoring results.

    Only results at or above ``suggestion_threshold`` are considered, at most
    ``max_suggestions`` of them; duplicates are removed preserving order.
    """
    if fallback is None or not fallback.enabled or not results:
        return []

    candidates = [r for r in results if r.relevance >= fallback.suggestion_threshold]
    suggestions: List[str] = []
    for result in candidates[: fallback.max_suggestions]:
        sentence = _first_sentence(result.content)
        if 10 < len(sentence) < 100:
            suggestion = f'Try asking about: "{sentence}..."'
        else:
            suggestion = GENERIC_SUGGESTION
        if suggestion not in suggestions:
            suggestions.append(suggestion)
    return suggestions


def build_idk_response(
    score: AnswerabilityScore,
    results: Sequence[FusedResult],
    templates: Optional[Sequence[IdkResponseTemplate]] = None,
    fallback: Optional[FallbackConfig] = None,
) -> IdkResponse:
    template = select_template(score, templates)
    suggestions = (
        generate_suggestions(results, fallback) if template.include_suggestions else None
    )
    return IdkResponse(
        message=template.template,
        reason_code=template.reason_code,
        suggestions=suggestions,
        confidence_level=score.confidence,
    )


def internal_error_response() -> IdkResponse:
    return IdkResponse(
        message=INTERNAL_ERROR_MESSAGE,
        reason_code=INTERNAL_ERROR,
        suggestions=None,
        confidence_level=0.0,
    )
