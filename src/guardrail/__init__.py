"""Answerability guardrail: confidence scoring, thresholds and IDK responses."""

from src.guardrail.audit import GuardrailAuditLogger
from src.guardrail.config_service import GuardrailConfigService, InMemoryConfigPersistence
from src.guardrail.models import GuardrailDecision, IdkResponse, TenantGuardrailConfig
from src.guardrail.service import AnswerabilityGuardrail

__all__ = [
    "AnswerabilityGuardrail",
    "GuardrailAuditLogger",
    "GuardrailConfigService",
    "GuardrailDecision",
    "IdkResponse",
    "InMemoryConfigPersistence",
    "TenantGuardrailConfig",
]
