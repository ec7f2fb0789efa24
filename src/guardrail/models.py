"""
Guardrail data model.

Decisions and their audit trail are pydantic models so they serialize
directly into response payloads and audit log entries.
"""

from typing import Dict, List, Literal, Optional

from pydantic import Field

from src.shared.models import FrozenModel, RagBaseModel

ThresholdType = Literal["strict", "moderate", "permissive", "custom"]

# Decision rationales recorded in the audit trail
ANSWERABLE = "ANSWERABLE"
NOT_ANSWERABLE = "NOT_ANSWERABLE"
GUARDRAIL_DISABLED = "GUARDRAIL_DISABLED"
BYPASS_ENABLED = "BYPASS_ENABLED"
INTERNAL_ERROR = "INTERNAL_ERROR"


class Percentiles(FrozenModel):
    p25: float = 0.0
    p50: float = 0.0
    p75: float = 0.0
    p90: float = 0.0


class ScoreStatistics(FrozenModel):
    mean: float = 0.0
    max: float = 0.0
    min: float = 0.0
    std_dev: float = 0.0
    count: int = 0
    percentiles: Percentiles = Field(default_factory=Percentiles)


class AlgorithmScores(FrozenModel):
    statistical: float
    threshold: float
    ml_features: float
    reranker_confidence: Optional[float] = None


class AlgorithmWeights(FrozenModel):
    statistical: float = 0.4
    threshold: float = 0.3
    ml_features: float = 0.2
    reranker_confidence: float = 0.1

    def total(self) -> float:
        return self.statistical + self.threshold + self.ml_features + self.reranker_confidence


class AnswerabilityThreshold(FrozenModel):
    type: ThresholdType
    min_confidence: float
    min_top_score: float
    min_mean_score: float
    max_std_dev: float
    min_result_count: int


class AnswerabilityScore(FrozenModel):
    confidence: float
    score_stats: ScoreStatistics
    algorithm_scores: AlgorithmScores
    is_answerable: bool
    reasoning: str
    computation_time_ms: float = 0.0


class IdkResponseTemplate(FrozenModel):
    id: str
    reason_code: str
    template: str
    include_suggestions: bool = True


class FallbackConfig(FrozenModel):
    enabled: bool = True
    max_suggestions: int = 3
    suggestion_threshold: float = 0.3


class IdkResponse(FrozenModel):
    message: str
    reason_code: str
    suggestions: Optional[List[str]] = None
    confidence_level: float


class PerformanceMetrics(FrozenModel):
    scoring_duration_ms: float
    total_duration_ms: float


class GuardrailAuditTrail(FrozenModel):
    timestamp: str
    query: str
    tenant_id: str
    user_context: str
    retrieval_results_count: int
    score_stats_summary: str
    decision_rationale: str
    performance_metrics: PerformanceMetrics


class GuardrailDecision(FrozenModel):
    is_answerable: bool
    score: AnswerabilityScore
    threshold: AnswerabilityThreshold
    idk_response: Optional[IdkResponse] = None
    audit_trail: GuardrailAuditTrail

    @property
    def rationale(self) -> str:
        return self.audit_trail.decision_rationale


class TenantGuardrailConfig(RagBaseModel):
    """Per-tenant guardrail settings. Validated by GuardrailConfigService."""

    tenant_id: str
    enabled: bool = True
    threshold: AnswerabilityThreshold
    idk_templates: Optional[List[IdkResponseTemplate]] = None
    fallback: Optional[FallbackConfig] = Field(default_factory=FallbackConfig)
    bypass_enabled: bool = False
    algorithm_weights: AlgorithmWeights = Field(default_factory=AlgorithmWeights)

    def weights_dict(self) -> Dict[str, float]:
        return self.algorithm_weights.model_dump()
