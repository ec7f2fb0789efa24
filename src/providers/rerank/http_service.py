"""
HTTP cross-encoder reranker client.

Calls an external service exposing ``POST /v1/rerank``:

    request:  {"query": str, "documents": [str, ...], "model": str}
    response: {"results": [{"index": int, "score": float}, ...]}

Documents are sent in batches. Each batch gets bounded retries on transport
errors and overload / server-error responses. Batches that still fail are
skipped (their documents keep the fused score); if every batch fails the
call raises ``UpstreamUnavailable`` so the orchestrator can skip the stage.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from src.providers.rerank.base import RerankDocument, RerankScore
from src.shared.config import RerankerConfig
from src.shared.errors import UpstreamUnavailable
from src.shared.observability import get_logger
from src.shared.observability.metrics import (
    rerank_error_total,
    rerank_latency_ms,
    rerank_request_total,
)
from src.shared.resilience import CircuitBreaker

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 16
RETRYABLE_STATUS = {429, 500, 502, 503, 504}

IndexedDocument = Tuple[int, RerankDocument]


def batch_documents(
    documents: List[IndexedDocument],
    max_batch_size: int = DEFAULT_BATCH_SIZE,
) -> List[List[IndexedDocument]]:
    """
    Split indexed documents into batches for efficient HTTP requests.

    Args:
        documents: List of (original_index, document) tuples to batch
        max_batch_size: Maximum documents per batch (default: 16)

    Returns:
        List of batches, where each batch is a list of (original_index, document) tuples
    """
    if max_batch_size <= 0:
        raise ValueError("max_batch_size must be positive")
    return [
        documents[start : start + max_batch_size]
        for start in range(0, len(documents), max_batch_size)
    ]


class _RetryableError(Exception):
    pass


class HttpRerankerService:
    """Async HTTP client for a remote cross-encoder reranker.

    Features:
    - Batched HTTP requests (configurable batch size)
    - Bounded retries with a fixed delay
    - Circuit breaker shared across requests
    """

    def __init__(
        self,
        config: Optional[RerankerConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self._config = config or RerankerConfig()
        self._model_id = self._config.model
        self._provider_name = "http-reranker"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self._config.base_url, timeout=timeout
        )
        self._batch_size = self._config.batch_size
        self._max_retries = self._config.max_retries
        self._retry_delay = self._config.retry_delay_ms / 1000.0
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            name=self._provider_name,
            failure_threshold=self._config.circuit_failure_threshold,
            recovery_timeout=self._config.circuit_recovery_timeout,
        )

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpRerankerService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def provider_name(self) -> str:
        return self._provider_name

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def health_check(self) -> bool:
        try:
            resp = await self._client.get("/health", timeout=3.0)
        except httpx.HTTPError as exc:
            logger.warning("reranker_health_check_failed", error=str(exc))
            return False
        return resp.status_code == 200

    async def _post_batch(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.post("/v1/rerank", json=payload)
        except httpx.TransportError as exc:
            raise _RetryableError(f"transport error: {exc}") from exc

        if response.status_code in RETRYABLE_STATUS:
            raise _RetryableError(f"HTTP {response.status_code}")
        if response.status_code != 200:
            raise UpstreamUnavailable(
                "reranker",
                RuntimeError(f"HTTP {response.status_code}: {response.text[:200]}"),
            )
        return response.json()

    async def _rerank_batch(
        self, query: str, batch: List[IndexedDocument]
    ) -> List[Tuple[int, float]]:
        """
        Score one batch with a single HTTP request, retrying transient failures.

        Returns:
            List of (original_index, score) tuples
        """
        payload: Dict[str, Any] = {
            "query": query,
            "documents": [doc.text for _, doc in batch],
            "model": self._model_id,
        }

        attempt = 0
        while True:
            try:
                data = await self._post_batch(payload)
                break
            except _RetryableError as exc:
                attempt += 1
                if attempt > self._max_retries:
                    raise UpstreamUnavailable("reranker", exc) from exc
                logger.info(
                    "reranker_batch_retry",
                    attempt=attempt,
                    max_retries=self._max_retries,
                    error=str(exc),
                )
                await asyncio.sleep(self._retry_delay)

        scored: List[Tuple[int, float]] = []
        for result in data.get("results", []):
            batch_index = result.get("index")
            score = result.get("score")
            if batch_index is None or score is None:
                continue
            if 0 <= batch_index < len(batch):
                scored.append((batch[batch_index][0], float(score)))
        return scored

    async def rerank(
        self, query: str, documents: Sequence[RerankDocument], top_k: int
    ) -> List[RerankScore]:
        """
        Score documents in batches.

        Raises:
            UpstreamUnavailable: Circuit open, or every batch failed
        """
        if not documents:
            return []

        self._circuit_breaker.guard("reranker")

        start_time = time.perf_counter()
        indexed = list(enumerate(documents))
        batches = batch_documents(indexed, max_batch_size=self._batch_size)

        all_scores: Dict[int, float] = {}
        failures: List[UpstreamUnavailable] = []
        for batch in batches:
            try:
                for orig_idx, score in await self._rerank_batch(query, batch):
                    all_scores[orig_idx] = score
            except UpstreamUnavailable as exc:
                failures.append(exc)
                rerank_error_total.labels(
                    model_id=self._model_id, error_type="batch_failed"
                ).inc()
                logger.warning(
                    "reranker_batch_failed",
                    batch_size=len(batch),
                    error=exc.message,
                )

        latency_ms = (time.perf_counter() - start_time) * 1000
        rerank_latency_ms.labels(model_id=self._model_id).observe(latency_ms)

        if failures and len(failures) == len(batches):
            self._circuit_breaker.record_failure()
            rerank_request_total.labels(model_id=self._model_id, status="error").inc()
            raise failures[-1]

        self._circuit_breaker.record_success()
        rerank_request_total.labels(model_id=self._model_id, status="success").inc()

        ranked = sorted(
            (RerankScore(id=documents[i].id, score=s) for i, s in all_scores.items()),
            key=lambda r: (-r.score, r.id),
        )

        logger.debug(
            "reranker_complete",
            documents=len(documents),
            batches=len(batches),
            failed_batches=len(failures),
            scored=len(ranked),
            latency_ms=round(latency_ms, 2),
        )
        return ranked[:top_k]
