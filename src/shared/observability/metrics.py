# Prometheus metrics for the retrieval core

from prometheus_client import Counter, Histogram, Info, generate_latest

from .logging import get_logger

logger = get_logger(__name__)

# ===== Retrieval stage metrics =====
retrieval_stage_duration_ms = Histogram(
    "retrieval_stage_duration_ms",
    "Duration of a retrieval pipeline stage in milliseconds",
    ["stage"],
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
)

retrieval_stage_timeouts_total = Counter(
    "retrieval_stage_timeouts_total",
    "Stages that exceeded their time budget",
    ["stage"],
)

retrieval_stage_degraded_total = Counter(
    "retrieval_stage_degraded_total",
    "Optional stages skipped in favour of a fallback path",
    ["stage", "reason"],
)

retrieval_requests_total = Counter(
    "retrieval_requests_total",
    "Retrieval requests by outcome",
    ["status"],
)

fusion_candidates_total = Histogram(
    "fusion_candidates_total",
    "Candidates produced by rank fusion",
    ["strategy"],
    buckets=(0, 1, 5, 10, 20, 50, 100, 200),
)

# ===== Reranking metrics =====
rerank_request_total = Counter(
    "rerank_request_total",
    "Total reranking requests",
    ["model_id", "status"],
)

rerank_error_total = Counter(
    "rerank_error_total",
    "Total reranking errors",
    ["model_id", "error_type"],
)

rerank_latency_ms = Histogram(
    "rerank_latency_ms",
    "Reranking latency in milliseconds",
    ["model_id"],
    buckets=(10, 25, 50, 100, 250, 500, 1000, 2500, 5000),
)

# ===== Guardrail metrics =====
guardrail_decisions_total = Counter(
    "guardrail_decisions_total",
    "Guardrail decisions by tenant and outcome",
    ["tenant", "decision"],
)

guardrail_scoring_duration_ms = Histogram(
    "guardrail_scoring_duration_ms",
    "Guardrail confidence scoring duration in milliseconds",
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 25),
)

# ===== Streaming metrics =====
stream_events_total = Counter(
    "stream_events_total",
    "Events emitted on response streams",
    ["type"],
)

service_info = Info("rag_retrieval_core", "Retrieval core service information")


def setup_metrics(app_name: str, version: str, environment: str) -> None:
    """
    Publish static service information.

    Args:
        app_name: Service name
        version: Service version
        environment: Deployment environment
    """
    logger.info("metrics_setup", app=app_name, version=version)
    service_info.info(
        {"name": app_name, "version": version, "environment": environment}
    )


def get_metrics() -> bytes:
    """Render all registered metrics in Prometheus text format."""
    return generate_latest()
