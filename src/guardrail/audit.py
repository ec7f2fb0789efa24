"""
Audit logging for guardrail decisions.

Entries are emitted as structured log events; persisting them is the job of
whatever consumes the log stream.
"""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from src.guardrail.models import (
    BYPASS_ENABLED,
    GUARDRAIL_DISABLED,
    AnswerabilityThreshold,
    GuardrailDecision,
)
from src.shared.filters import UserContext
from src.shared.observability import get_correlation_id, get_logger

logger = get_logger(__name__)


def decision_type(decision: GuardrailDecision) -> str:
    rationale = decision.audit_trail.decision_rationale
    if rationale == GUARDRAIL_DISABLED:
        return "disabled"
    if rationale == BYPASS_ENABLED:
        return "bypassed"
    return "answerable" if decision.is_answerable else "not_answerable"


class GuardrailAuditLogger:
    """Audit logger for guardrail decisions and configuration changes"""

    def __init__(self, enabled: bool = True, hash_queries: bool = False):
        self.enabled = enabled
        self.hash_queries = hash_queries

    def _hash_data(self, data: Any) -> str:
        """Hash sensitive data for audit log"""
        if data is None:
            return "null"
        data_str = json.dumps(data, sort_keys=True, default=str)
        return hashlib.sha256(data_str.encode()).hexdigest()[:16]

    def _query_field(self, query: str) -> Dict[str, str]:
        if self.hash_queries:
            return {"query_hash": self._hash_data(query)}
        return {"query": query}

    def build_entry(
        self,
        route: str,
        query: str,
        user_context: UserContext,
        decision: GuardrailDecision,
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        stats = decision.score.score_stats
        entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "route": route,
            "tenant": user_context.tenant_id or "default",
            "user_id": user_context.id,
            "decision": decision_type(decision),
            "confidence": decision.score.confidence,
            "threshold_type": decision.threshold.type,
            "reason_code": decision.idk_response.reason_code
            if decision.idk_response
            else None,
            "retrieval_results_count": decision.audit_trail.retrieval_results_count,
            "score_stats": {
                "mean": stats.mean,
                "max": stats.max,
                "min": stats.min,
                "std_dev": stats.std_dev,
                "count": stats.count,
            },
            "performance_metrics": decision.audit_trail.performance_metrics.model_dump(),
        }
        entry.update(self._query_field(query))
        if context:
            entry["context"] = context
        return entry

    def log_decision(
        self,
        route: str,
        query: str,
        user_context: UserContext,
        decision: GuardrailDecision,
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Log a guardrail decision.

        Returns:
            The logged entry, or None when auditing is disabled
        """
        if not self.enabled:
            return None

        entry = self.build_entry(route, query, user_context, decision, context)
        logger.info(
            "guardrail_decision",
            audit=True,
            correlation_id=get_correlation_id(),
            **entry,
        )
        return entry

    def log_threshold_update(
        self,
        tenant_id: str,
        old_threshold: Optional[AnswerabilityThreshold],
        new_threshold: AnswerabilityThreshold,
        updated_by: str = "system",
    ) -> None:
        if not self.enabled:
            return
        logger.info(
            "guardrail_threshold_updated",
            audit=True,
            tenant_id=tenant_id,
            old_threshold=old_threshold.model_dump() if old_threshold else None,
            new_threshold=new_threshold.model_dump(),
            updated_by=updated_by,
            ts=datetime.now(timezone.utc).isoformat(),
        )

    def log_error(self, route: str, query: str, tenant_id: str, error_message: str) -> None:
        if not self.enabled:
            return
        logger.error(
            "guardrail_error",
            audit=True,
            route=route,
            tenant_id=tenant_id,
            error_message=error_message,
            ts=datetime.now(timezone.utc).isoformat(),
            **self._query_field(query),
        )
