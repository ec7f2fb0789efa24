"""
Answerability guardrail.

Decides whether the packed evidence set is strong enough to answer from, and
produces an IDK response when it is not. Scoring is synchronous and does no
I/O. ``evaluate`` never raises: an internal failure becomes a conservative
refusal with reason code ``INTERNAL_ERROR``.
"""

import json
import time
from datetime import datetime, timezone
from typing import Optional, Sequence

from src.guardrail import scoring
from src.guardrail.audit import GuardrailAuditLogger, decision_type
from src.guardrail.config_service import GuardrailConfigService
from src.guardrail.models import (
    ANSWERABLE,
    BYPASS_ENABLED,
    GUARDRAIL_DISABLED,
    INTERNAL_ERROR,
    NOT_ANSWERABLE,
    AlgorithmScores,
    AnswerabilityScore,
    AnswerabilityThreshold,
    GuardrailAuditTrail,
    GuardrailDecision,
    PerformanceMetrics,
    ScoreStatistics,
    TenantGuardrailConfig,
)
from src.guardrail.templates import build_idk_response, internal_error_response
from src.guardrail.thresholds import STRICT
from src.query.results import FusedResult
from src.shared.config_store import DEFAULT_TENANT
from src.shared.filters import UserContext
from src.shared.observability import get_logger
from src.shared.observability.metrics import (
    guardrail_decisions_total,
    guardrail_scoring_duration_ms,
)

logger = get_logger(__name__)


def passes_threshold(score: AnswerabilityScore, threshold: AnswerabilityThreshold) -> bool:
    stats = score.score_stats
    return (
        score.confidence >= threshold.min_confidence
        and stats.max >= threshold.min_top_score
        and stats.mean >= threshold.min_mean_score
        and stats.std_dev <= threshold.max_std_dev
        and stats.count >= threshold.min_result_count
    )


def _passthrough_score(reasoning: str) -> AnswerabilityScore:
    return AnswerabilityScore(
        confidence=1.0,
        score_stats=ScoreStatistics(),
        algorithm_scores=AlgorithmScores(
            statistical=1.0, threshold=1.0, ml_features=1.0, reranker_confidence=1.0
        ),
        is_answerable=True,
        reasoning=reasoning,
        computation_time_ms=0.0,
    )


class AnswerabilityGuardrail:
    def __init__(
        self,
        config_service: Optional[GuardrailConfigService] = None,
        audit_logger: Optional[GuardrailAuditLogger] = None,
    ):
        self.config_service = config_service or GuardrailConfigService()
        self.audit_logger = audit_logger or GuardrailAuditLogger()

    def _audit_trail(
        self,
        query: str,
        user_context: UserContext,
        results: Sequence[FusedResult],
        rationale: str,
        started: float,
        scoring_ms: float = 0.0,
    ) -> GuardrailAuditTrail:
        total_ms = (time.perf_counter() - started) * 1000
        if results:
            mean = sum(r.relevance for r in results) / len(results)
            summary = f"mean={mean:.4f}"
        else:
            summary = "no_results"
        return GuardrailAuditTrail(
            timestamp=datetime.now(timezone.utc).isoformat(),
            query=query,
            tenant_id=user_context.tenant_id or DEFAULT_TENANT,
            user_context=json.dumps(
                {
                    "id": user_context.id,
                    "tenant_id": user_context.tenant_id,
                    "group_ids": list(user_context.group_ids),
                }
            ),
            retrieval_results_count=len(results),
            score_stats_summary=summary,
            decision_rationale=rationale,
            performance_metrics=PerformanceMetrics(
                scoring_duration_ms=scoring_ms or total_ms,
                total_duration_ms=total_ms,
            ),
        )

    def calculate_score(
        self,
        results: Sequence[FusedResult],
        config: TenantGuardrailConfig,
        reranking_applied: bool = False,
    ) -> AnswerabilityScore:
        started = time.perf_counter()
        stats, algorithms, confidence = scoring.score_results(
            results, config.algorithm_weights, reranking_applied=reranking_applied
        )
        elapsed_ms = (time.perf_counter() - started) * 1000
        guardrail_scoring_duration_ms.observe(elapsed_ms)
        score = AnswerabilityScore(
            confidence=confidence,
            score_stats=stats,
            algorithm_scores=algorithms,
            is_answerable=False,
            reasoning=scoring.score_reasoning(stats, algorithms),
            computation_time_ms=elapsed_ms,
        )
        return score.model_copy(
            update={"is_answerable": passes_threshold(score, config.threshold)}
        )

    def evaluate(
        self,
        query: str,
        results: Sequence[FusedResult],
        user_context: UserContext,
        reranking_applied: bool = False,
    ) -> GuardrailDecision:
        """
        Decide whether ``results`` can support an answer to ``query``.

        Never raises.
        """
        started = time.perf_counter()
        tenant = user_context.tenant_id or DEFAULT_TENANT
        try:
            decision = self._evaluate(
                query, results, user_context, reranking_applied, started
            )
        except Exception as exc:
            logger.error(
                "guardrail_evaluation_failed",
                tenant_id=tenant,
                error=str(exc),
                exc_info=True,
            )
            self.audit_logger.log_error("guardrail", query, tenant, str(exc))
            decision = self._internal_error_decision(query, user_context, started)

        guardrail_decisions_total.labels(
            tenant=tenant, decision=decision_type(decision)
        ).inc()
        return decision

    def _evaluate(
        self,
        query: str,
        results: Sequence[FusedResult],
        user_context: UserContext,
        reranking_applied: bool,
        started: float,
    ) -> GuardrailDecision:
        config = self.config_service.get_tenant_config(user_context.tenant_id)

        if not config.enabled:
            return GuardrailDecision(
                is_answerable=True,
                score=_passthrough_score("Guardrail disabled"),
                threshold=config.threshold,
                audit_trail=self._audit_trail(
                    query, user_context, results, GUARDRAIL_DISABLED, started
                ),
            )

        if config.bypass_enabled and user_context.is_admin():
            return GuardrailDecision(
                is_answerable=True,
                score=_passthrough_score("Guardrail bypassed"),
                threshold=config.threshold,
                audit_trail=self._audit_trail(
                    query, user_context, results, BYPASS_ENABLED, started
                ),
            )

        score = self.calculate_score(results, config, reranking_applied)
        idk = None
        if not score.is_answerable:
            idk = build_idk_response(
                score, results, templates=config.idk_templates, fallback=config.fallback
            )

        decision = GuardrailDecision(
            is_answerable=score.is_answerable,
            score=score,
            threshold=config.threshold,
            idk_response=idk,
            audit_trail=self._audit_trail(
                query,
                user_context,
                results,
                ANSWERABLE if score.is_answerable else NOT_ANSWERABLE,
                started,
                scoring_ms=score.computation_time_ms,
            ),
        )
        logger.debug(
            "guardrail_evaluated",
            tenant_id=user_context.tenant_id,
            answerable=decision.is_answerable,
            confidence=round(score.confidence, 4),
            reason_code=idk.reason_code if idk else None,
        )
        return decision

    def _internal_error_decision(
        self,
        query: str,
        user_context: UserContext,
        started: float,
    ) -> GuardrailDecision:
        idk = internal_error_response()
        return GuardrailDecision(
            is_answerable=False,
            score=AnswerabilityScore(
                confidence=0.0,
                score_stats=ScoreStatistics(),
                algorithm_scores=AlgorithmScores(
                    statistical=0.0, threshold=0.0, ml_features=0.0
                ),
                is_answerable=False,
                reasoning="Internal error during evaluation",
            ),
            threshold=STRICT,
            idk_response=idk,
            audit_trail=self._audit_trail(
                query, user_context, (), INTERNAL_ERROR, started
            ),
        )
