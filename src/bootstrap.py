"""
Process start-up wiring.

Loads configuration once, configures logging and metrics, and assembles the
retrieval core from the caller's collaborators. Nothing here is a module-level
singleton; the host application owns the returned objects.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from src.guardrail import AnswerabilityGuardrail, GuardrailAuditLogger, GuardrailConfigService
from src.providers.embeddings import EmbeddingProvider
from src.providers.generation import GenerationProvider
from src.providers.rerank import HttpRerankerService, RerankProvider
from src.providers.search import KeywordSearchService, VectorSearchService
from src.providers.tokenizer_service import create_tokenizer_service
from src.query.hybrid_retrieval import HybridRetrievalOrchestrator
from src.services.context_packer import ContextPacker
from src.shared.config import Config, Settings, load_config
from src.shared.observability import get_logger, setup_logging
from src.shared.observability.metrics import setup_metrics
from src.shared.resilience import TimeoutManager
from src.streaming import StreamingCoordinator

logger = get_logger(__name__)


@dataclass
class RetrievalCore:
    config: Config
    orchestrator: HybridRetrievalOrchestrator
    coordinator: Optional[StreamingCoordinator]
    guardrail_config: GuardrailConfigService
    timeout_manager: TimeoutManager
    reranker: Optional[RerankProvider] = None

    async def aclose(self) -> None:
        if isinstance(self.reranker, HttpRerankerService):
            await self.reranker.aclose()


def init_config(settings: Optional[Settings] = None) -> tuple[Config, Settings]:
    """Load configuration and configure logging and metrics."""
    config, settings = load_config(settings)
    setup_logging(config.app.log_level, json_output=settings.log_json)
    setup_metrics(config.app.name, config.app.version, config.app.environment)
    logger.info(
        "retrieval_core_configured",
        env=settings.env,
        reranker_enabled=config.search.reranker.enabled,
        guardrail_enabled=config.guardrail.enabled,
    )
    return config, settings


def build_core(
    config: Config,
    embedder: EmbeddingProvider,
    vector_search: VectorSearchService,
    keyword_search: Optional[KeywordSearchService] = None,
    generator: Optional[GenerationProvider] = None,
    reranker: Optional[RerankProvider] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> RetrievalCore:
    """
    Assemble the retrieval core.

    When the reranker is enabled in config and none is supplied, an HTTP
    reranker client is created against ``search.reranker.base_url``.
    """
    if reranker is None and config.search.reranker.enabled:
        reranker = HttpRerankerService(
            config.search.reranker,
            client=http_client,
            timeout=config.timeouts.reranker / 1000.0,
        )

    audit_logger = GuardrailAuditLogger()
    guardrail_config = GuardrailConfigService(config.guardrail, audit_logger=audit_logger)
    timeout_manager = TimeoutManager(config.timeouts)
    packer = ContextPacker(
        config.context,
        tokenizer=create_tokenizer_service(config.context.budget.model),
        embedder=embedder,
        embedding_timeout_ms=config.timeouts.embedding,
    )
    orchestrator = HybridRetrievalOrchestrator(
        config,
        embedder=embedder,
        vector_search=vector_search,
        keyword_search=keyword_search,
        reranker=reranker,
        packer=packer,
        guardrail=AnswerabilityGuardrail(guardrail_config, audit_logger),
        timeout_manager=timeout_manager,
    )
    coordinator = (
        StreamingCoordinator(orchestrator, generator) if generator is not None else None
    )
    return RetrievalCore(
        config=config,
        orchestrator=orchestrator,
        coordinator=coordinator,
        guardrail_config=guardrail_config,
        timeout_manager=timeout_manager,
        reranker=reranker,
    )
