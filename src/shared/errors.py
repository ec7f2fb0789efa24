"""
Error taxonomy for the retrieval core.

Every error carries a stable ``code`` that transport layers can surface to
clients without leaking internal messages.
"""

from typing import Any, Dict, List, Optional


class RetrievalCoreError(Exception):
    """Base class for all retrieval-core errors."""

    code = "RETRIEVAL_CORE_ERROR"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class StageTimeout(RetrievalCoreError):
    """A pipeline stage exceeded its time budget."""

    code = "STAGE_TIMEOUT"

    def __init__(self, stage: str, timeout_ms: float):
        super().__init__(
            f"{stage} timeout after {timeout_ms:g}ms",
            details={"stage": stage, "timeout_ms": timeout_ms},
        )
        self.stage = stage
        self.timeout_ms = timeout_ms


class UpstreamUnavailable(RetrievalCoreError):
    """Non-timeout failure from an external collaborator."""

    code = "UPSTREAM_UNAVAILABLE"

    def __init__(self, stage: str, cause: Optional[BaseException] = None):
        reason = str(cause) if cause is not None else "unavailable"
        super().__init__(
            f"{stage} unavailable: {reason}",
            details={"stage": stage},
        )
        self.stage = stage
        self.cause = cause


class InsufficientEvidence(RetrievalCoreError):
    """Guardrail refusal. A valid terminal decision, not a failure."""

    code = "INSUFFICIENT_EVIDENCE"

    def __init__(self, decision: Any):
        reason_code = None
        idk = getattr(decision, "idk_response", None)
        if idk is not None:
            reason_code = idk.reason_code
        super().__init__(
            "Insufficient evidence to answer",
            details={"reason_code": reason_code},
        )
        self.decision = decision


class InternalScoringError(RetrievalCoreError):
    """Unexpected failure inside fusion, packing or guardrail scoring."""

    code = "INTERNAL_SCORING_ERROR"


class RequestTimeout(RetrievalCoreError):
    """The overall request budget was exceeded."""

    code = "REQUEST_TIMEOUT"

    def __init__(self, timeout_ms: float):
        super().__init__(
            f"request exceeded overall budget of {timeout_ms:g}ms",
            details={"timeout_ms": timeout_ms},
        )
        self.timeout_ms = timeout_ms


class RetrievalStageError(RetrievalCoreError):
    """A mandatory retrieval stage (embedding, vector search) failed."""

    code = "RETRIEVAL_FAILED"

    def __init__(self, stage: str, cause: RetrievalCoreError):
        super().__init__(
            f"{stage} failed: {cause.message}",
            details={"stage": stage, "cause_code": cause.code},
        )
        self.stage = stage
        self.cause = cause


class GenerationError(RetrievalCoreError):
    """Answer generation failed or timed out."""

    code = "GENERATION_FAILED"

    def __init__(self, cause: RetrievalCoreError):
        super().__init__(
            f"generation failed: {cause.message}",
            details={"cause_code": cause.code},
        )
        self.cause = cause


class ConfigValidationError(RetrievalCoreError):
    """Tenant configuration failed validation."""

    code = "CONFIG_INVALID"

    def __init__(self, errors: List[str]):
        super().__init__(
            "Invalid configuration: " + "; ".join(errors),
            details={"errors": list(errors)},
        )
        self.errors = list(errors)


class FilterValidationError(RetrievalCoreError):
    code = "FILTER_INVALID"


class ResponseBuildError(RetrievalCoreError):
    """A mandatory response field was missing at build time."""

    code = "RESPONSE_BUILD_FAILED"


class StreamStateError(RetrievalCoreError):
    """An event was emitted out of order."""

    code = "STREAM_STATE_INVALID"
