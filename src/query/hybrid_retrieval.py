"""
Hybrid retrieval orchestrator.

Combines vector search with keyword search, fuses the two rankings, optionally
reranks with a cross-encoder, packs the evidence set and asks the
answerability guardrail whether it can support an answer.

Stage policy:
    embedding, vector search   mandatory; failure raises RetrievalStageError
    keyword search             optional; timeout or error degrades to vector-only
    reranker                   optional; timeout or error keeps fusion order
    whole request              bounded by TimeoutConfig.overall (RequestTimeout)
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import Field

from src.guardrail.models import GuardrailDecision
from src.guardrail.service import AnswerabilityGuardrail
from src.providers.embeddings import EmbeddingProvider
from src.providers.rerank.base import RerankDocument, RerankProvider
from src.providers.search import KeywordSearchService, VectorSearchService
from src.query.fusion import fuse
from src.query.intent import IntentConfig, QueryIntentClassifier
from src.query.results import FusedResult, SearchResult
from src.services.context_packer import ContextPacker, PackingTrace
from src.shared.config import Config, SearchConfig, TimeoutConfig
from src.shared.config_store import DEFAULT_TENANT, TenantConfigStore
from src.shared.errors import (
    RequestTimeout,
    RetrievalCoreError,
    RetrievalStageError,
    StageTimeout,
    UpstreamUnavailable,
)
from src.shared.filters import SearchFilter, UserContext
from src.shared.models import FrozenModel
from src.shared.observability import get_logger
from src.shared.observability.metrics import (
    retrieval_requests_total,
    retrieval_stage_degraded_total,
    retrieval_stage_duration_ms,
)
from src.shared.resilience import TimeoutManager, execute_with_timeout

logger = get_logger(__name__)


class TenantSearchConfig(FrozenModel):
    """Per-tenant search switches held in the tenant config store."""

    tenant_id: str = DEFAULT_TENANT
    collection: str = "documents"
    limit: int = Field(default=8, gt=0)
    rrf_k: int = Field(default=60, gt=0)
    normalization: str = "minmax"
    keyword_search_enabled: bool = True
    reranker_enabled: bool = False
    reranker_top_k: int = Field(default=8, gt=0)

    @classmethod
    def from_search_config(
        cls, search: SearchConfig, tenant_id: str = DEFAULT_TENANT
    ) -> "TenantSearchConfig":
        return cls(
            tenant_id=tenant_id,
            collection=search.collection,
            limit=search.limit,
            rrf_k=search.rrf_k,
            normalization=search.normalization,
            keyword_search_enabled=search.keyword_search_enabled,
            reranker_enabled=search.reranker.enabled,
            reranker_top_k=search.reranker.top_k,
        )


@dataclass
class RetrievalRequest:
    query: str
    limit: Optional[int] = None
    route: str = "retrieve"
    request_id: Optional[str] = None


@dataclass
class RetrievalMetrics:
    stage_durations_ms: Dict[str, float] = field(default_factory=dict)
    vector_count: int = 0
    keyword_count: int = 0
    fused_count: int = 0
    final_count: int = 0
    keyword_degraded: bool = False
    keyword_reason: Optional[str] = None
    reranking_enabled: bool = False
    reranker_reason: Optional[str] = None
    documents_reranked: int = 0
    fusion_strategy: Optional[str] = None
    total_duration_ms: float = 0.0

    def record_stage(self, stage: str, started: float) -> None:
        elapsed = (time.perf_counter() - started) * 1000
        self.stage_durations_ms[stage] = elapsed
        retrieval_stage_duration_ms.labels(stage=stage).observe(elapsed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage_durations_ms": {k: round(v, 3) for k, v in self.stage_durations_ms.items()},
            "vector_count": self.vector_count,
            "keyword_count": self.keyword_count,
            "fused_count": self.fused_count,
            "final_count": self.final_count,
            "keyword_degraded": self.keyword_degraded,
            "keyword_reason": self.keyword_reason,
            "reranking_enabled": self.reranking_enabled,
            "reranker_reason": self.reranker_reason,
            "documents_reranked": self.documents_reranked,
            "fusion_strategy": self.fusion_strategy,
            "total_duration_ms": round(self.total_duration_ms, 3),
        }


@dataclass
class RetrievalResponse:
    """
    Outcome of one retrieval.

    ``results`` holds the packed evidence only when the guardrail found it
    answerable; ``evidence`` always holds what the guardrail was shown.
    """

    results: List[FusedResult]
    guardrail_decision: GuardrailDecision
    metrics: RetrievalMetrics
    intent: IntentConfig
    evidence: List[FusedResult] = field(default_factory=list)
    packing_trace: Optional[PackingTrace] = None

    @property
    def is_answerable(self) -> bool:
        return self.guardrail_decision.is_answerable

    @property
    def packed_context(self) -> str:
        return "\n\n".join(r.content for r in self.results)


class HybridRetrievalOrchestrator:
    """Vector + keyword retrieval with fusion, reranking, packing and guardrail."""

    def __init__(
        self,
        config: Config,
        embedder: EmbeddingProvider,
        vector_search: VectorSearchService,
        keyword_search: Optional[KeywordSearchService] = None,
        reranker: Optional[RerankProvider] = None,
        packer: Optional[ContextPacker] = None,
        guardrail: Optional[AnswerabilityGuardrail] = None,
        timeout_manager: Optional[TimeoutManager] = None,
        search_store: Optional[TenantConfigStore[TenantSearchConfig]] = None,
        classifier: Optional[QueryIntentClassifier] = None,
    ):
        self.config = config
        self.embedder = embedder
        self.vector_search = vector_search
        self.keyword_search = keyword_search
        self.reranker = reranker
        self.packer = packer or ContextPacker(
            config.context,
            embedder=embedder,
            embedding_timeout_ms=config.timeouts.embedding,
        )
        self.guardrail = guardrail or AnswerabilityGuardrail()
        self.timeout_manager = timeout_manager or TimeoutManager(config.timeouts)
        self.search_store = search_store or TenantConfigStore(
            default=TenantSearchConfig.from_search_config(config.search),
            name="search",
        )
        self.classifier = classifier or QueryIntentClassifier(config.search.intent)

    def get_search_config(self, tenant_id: Optional[str]) -> TenantSearchConfig:
        return self.search_store.get(tenant_id)

    def update_search_config(self, config: TenantSearchConfig) -> None:
        self.search_store.put(config.tenant_id, config)
        logger.info(
            "tenant_search_config_updated",
            tenant_id=config.tenant_id,
            keyword_search_enabled=config.keyword_search_enabled,
            reranker_enabled=config.reranker_enabled,
        )

    async def retrieve(
        self,
        request: RetrievalRequest,
        user_context: UserContext,
        search_filter: SearchFilter,
    ) -> RetrievalResponse:
        """
        Run the full retrieval pipeline for one request.

        Raises:
            RetrievalStageError: Embedding or vector search failed
            RequestTimeout: The overall budget expired
        """
        timeouts = self.timeout_manager.get_timeout_config(user_context.tenant_id)
        try:
            response = await asyncio.wait_for(
                self._retrieve(request, user_context, search_filter, timeouts),
                timeout=timeouts.overall / 1000.0,
            )
        except asyncio.TimeoutError:
            retrieval_requests_total.labels(status="timeout").inc()
            logger.error(
                "retrieval_request_timeout",
                tenant_id=user_context.tenant_id,
                timeout_ms=timeouts.overall,
            )
            raise RequestTimeout(timeouts.overall) from None
        except RetrievalCoreError:
            retrieval_requests_total.labels(status="error").inc()
            raise

        retrieval_requests_total.labels(
            status="answerable" if response.is_answerable else "refused"
        ).inc()
        return response

    async def _embed(self, query: str, timeouts: TimeoutConfig) -> List[float]:
        try:
            return await execute_with_timeout(
                lambda: self.embedder.embed(query), timeouts.embedding, "embedding"
            )
        except StageTimeout as exc:
            raise RetrievalStageError("embedding", exc) from exc
        except RetrievalCoreError as exc:
            raise RetrievalStageError("embedding", exc) from exc
        except Exception as exc:
            raise RetrievalStageError(
                "embedding", UpstreamUnavailable("embedding", exc)
            ) from exc

    async def _vector_search(
        self,
        vector: Sequence[float],
        limit: int,
        search_cfg: TenantSearchConfig,
        search_filter: SearchFilter,
        timeouts: TimeoutConfig,
    ) -> List[SearchResult]:
        try:
            return await execute_with_timeout(
                lambda: self.vector_search.search(
                    search_cfg.collection, vector, limit, search_filter
                ),
                timeouts.vector_search,
                "vector_search",
            )
        except RetrievalCoreError as exc:
            raise RetrievalStageError("vector_search", exc) from exc
        except Exception as exc:
            raise RetrievalStageError(
                "vector_search", UpstreamUnavailable("vector_search", exc)
            ) from exc

    async def _keyword_search(
        self,
        query: str,
        limit: int,
        search_cfg: TenantSearchConfig,
        search_filter: SearchFilter,
        timeouts: TimeoutConfig,
    ) -> Tuple[List[SearchResult], Optional[str]]:
        """
        Returns:
            (results, degradation reason). The reason is None on success.
        """
        if self.keyword_search is None or not search_cfg.keyword_search_enabled:
            return [], "disabled"

        try:
            results = await execute_with_timeout(
                lambda: self.keyword_search.search(
                    search_cfg.collection, query, limit, search_filter
                ),
                timeouts.keyword_search,
                "keyword_search",
            )
            return results, None
        except StageTimeout:
            reason = "timeout"
        except Exception as exc:
            reason = "error"
            logger.warning("keyword_search_failed", error=str(exc))

        retrieval_stage_degraded_total.labels(stage="keyword_search", reason=reason).inc()
        logger.warning("keyword_search_degraded", reason=reason)
        return [], reason

    async def _search(
        self,
        query: str,
        vector: Sequence[float],
        limit: int,
        search_cfg: TenantSearchConfig,
        search_filter: SearchFilter,
        timeouts: TimeoutConfig,
    ) -> Tuple[List[SearchResult], List[SearchResult], Optional[str]]:
        vector_task = asyncio.ensure_future(
            self._vector_search(vector, limit, search_cfg, search_filter, timeouts)
        )
        keyword_task = asyncio.ensure_future(
            self._keyword_search(query, limit, search_cfg, search_filter, timeouts)
        )
        try:
            vector_results, (keyword_results, keyword_reason) = await asyncio.gather(
                vector_task, keyword_task
            )
        except BaseException:
            vector_task.cancel()
            keyword_task.cancel()
            raise
        return vector_results, keyword_results, keyword_reason

    async def apply_reranker(
        self,
        query: str,
        fused: List[FusedResult],
        search_cfg: TenantSearchConfig,
        timeouts: TimeoutConfig,
        metrics: RetrievalMetrics,
    ) -> List[FusedResult]:
        """
        Rerank the top fused candidates.

        Any failure skips the stage and returns ``fused`` unchanged.
        """
        if not search_cfg.reranker_enabled or self.reranker is None:
            metrics.reranker_reason = "disabled"
            return fused
        if not fused:
            metrics.reranker_reason = "no_candidates"
            return fused

        top = fused[: search_cfg.reranker_top_k]
        documents = [RerankDocument(id=r.id, text=r.content) for r in top]
        try:
            scores = await execute_with_timeout(
                lambda: self.reranker.rerank(query, documents, len(documents)),
                timeouts.reranker,
                "reranker",
            )
        except StageTimeout:
            metrics.reranker_reason = "timeout"
        except UpstreamUnavailable as exc:
            metrics.reranker_reason = "unavailable"
            logger.warning("reranker_unavailable", error=exc.message)
        except Exception as exc:
            metrics.reranker_reason = "provider_error"
            logger.warning("reranker_failed", error=str(exc))
        else:
            by_id = {s.id: s.score for s in scores}
            for result in top:
                if result.id in by_id:
                    result.reranker_score = by_id[result.id]
                    result.final_score = result.reranker_score

            reranked = sorted(fused, key=lambda r: (-r.final_score, r.id))
            for rank, result in enumerate(reranked, start=1):
                result.rank = rank

            metrics.reranking_enabled = True
            metrics.reranker_reason = "ok"
            metrics.documents_reranked = len(by_id)
            return reranked

        retrieval_stage_degraded_total.labels(
            stage="reranker", reason=metrics.reranker_reason
        ).inc()
        logger.warning("reranker_skipped", reason=metrics.reranker_reason)
        return fused

    async def _retrieve(
        self,
        request: RetrievalRequest,
        user_context: UserContext,
        search_filter: SearchFilter,
        timeouts: TimeoutConfig,
    ) -> RetrievalResponse:
        started = time.perf_counter()
        metrics = RetrievalMetrics()
        search_cfg = self.get_search_config(user_context.tenant_id)
        query = request.query

        logger.info(
            "retrieval_started",
            query=query[:100],
            tenant_id=user_context.tenant_id,
            keyword_search_enabled=search_cfg.keyword_search_enabled,
            reranker_enabled=search_cfg.reranker_enabled,
        )

        # Retrieval depth comes from the intent profile; fusion waits for the
        # top vector score.
        base_intent = self.classifier.config_for_intent(self.classifier.classify(query))
        search_limit = max(base_intent.retrieval_k, request.limit or search_cfg.limit)

        stage = time.perf_counter()
        vector = await self._embed(query, timeouts)
        metrics.record_stage("embedding", stage)

        stage = time.perf_counter()
        vector_results, keyword_results, keyword_reason = await self._search(
            query, vector, search_limit, search_cfg, search_filter, timeouts
        )
        metrics.record_stage("search", stage)
        metrics.vector_count = len(vector_results)
        metrics.keyword_count = len(keyword_results)
        metrics.keyword_reason = keyword_reason
        metrics.keyword_degraded = keyword_reason in ("timeout", "error")

        top_vector_score = max((r.raw_score for r in vector_results), default=None)
        intent = self.classifier.config_for_query(query, top_vector_score)
        metrics.fusion_strategy = intent.fusion_strategy

        stage = time.perf_counter()
        fused = fuse(
            vector_results,
            keyword_results,
            intent,
            k=search_cfg.rrf_k,
            normalization=search_cfg.normalization,
        )
        metrics.record_stage("fusion", stage)
        metrics.fused_count = len(fused)

        stage = time.perf_counter()
        ranked = await self.apply_reranker(query, fused, search_cfg, timeouts, metrics)
        metrics.record_stage("rerank", stage)

        stage = time.perf_counter()
        packed = await self.packer.pack(
            query, ranked, max_results=request.limit or search_cfg.limit
        )
        metrics.record_stage("packing", stage)

        stage = time.perf_counter()
        decision = self.guardrail.evaluate(
            query,
            packed.results,
            user_context,
            reranking_applied=metrics.reranking_enabled,
        )
        metrics.record_stage("guardrail", stage)
        self.guardrail.audit_logger.log_decision(
            request.route,
            query,
            user_context,
            decision,
            context={"metrics": metrics.to_dict()},
        )

        results = packed.results if decision.is_answerable else []
        metrics.final_count = len(results)
        metrics.total_duration_ms = (time.perf_counter() - started) * 1000

        logger.info(
            "retrieval_complete",
            tenant_id=user_context.tenant_id,
            intent=intent.intent.value,
            fusion_strategy=intent.fusion_strategy,
            vector_count=metrics.vector_count,
            keyword_count=metrics.keyword_count,
            keyword_degraded=metrics.keyword_degraded,
            reranking_enabled=metrics.reranking_enabled,
            answerable=decision.is_answerable,
            total_duration_ms=round(metrics.total_duration_ms, 2),
        )
        return RetrievalResponse(
            results=results,
            guardrail_decision=decision,
            metrics=metrics,
            intent=intent,
            evidence=packed.results,
            packing_trace=packed.trace,
        )
