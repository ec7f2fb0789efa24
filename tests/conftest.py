# Shared fixtures for the retrieval core test suite.
# External collaborators (embedding model, search backends, reranker, LLM) are
# replaced with in-process fakes; nothing here needs network access.

import asyncio
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment
os.environ.setdefault("ENV", "test")

from src.guardrail import AnswerabilityGuardrail, GuardrailAuditLogger, GuardrailConfigService
from src.providers.rerank.base import RerankDocument, RerankScore
from src.providers.tokenizer_service import TokenizerBackend, TokenizerService
from src.query.hybrid_retrieval import HybridRetrievalOrchestrator
from src.query.results import FusedResult, ResultOrigin, SearchResult, SearchType
from src.services.context_packer import ContextPacker
from src.shared.config import (
    AnswerabilityBonusConfig,
    Config,
    ContextConfig,
    NoveltyConfig,
    TimeoutConfig,
)
from src.shared.filters import SearchFilter, UserContext
from src.shared.resilience import TimeoutManager


class WhitespaceTokenizerBackend(TokenizerBackend):
    """One token per whitespace-separated word. Deterministic and offline."""

    def __init__(self):
        self._vocab: Dict[str, int] = {}
        self._words: List[str] = []

    def encode(self, text: str) -> List[int]:
        ids = []
        for word in text.split():
            if word not in self._vocab:
                self._vocab[word] = len(self._words)
                self._words.append(word)
            ids.append(self._vocab[word])
        return ids

    def decode(self, token_ids: List[int]) -> str:
        return " ".join(self._words[i] for i in token_ids)


def make_tokenizer() -> TokenizerService:
    return TokenizerService(model="test", backend=WhitespaceTokenizerBackend())


class FakeEmbedder:
    def __init__(self, vector: Optional[List[float]] = None, delay: float = 0.0, error=None):
        self.vector = vector or [0.1, 0.2, 0.3]
        self.delay = delay
        self.error = error
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.vector)


class FakeSearch:
    """Vector or keyword backend returning canned results."""

    def __init__(
        self,
        results: Sequence[SearchResult] = (),
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ):
        self.results = list(results)
        self.delay = delay
        self.error = error
        self.calls: List[dict] = []
        self.cancelled = False

    async def search(self, collection, query, limit, filter):
        self.calls.append(
            {"collection": collection, "query": query, "limit": limit, "filter": filter}
        )
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return self.results[:limit]


class FakeReranker:
    def __init__(
        self,
        scores: Optional[Dict[str, float]] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ):
        self.scores = scores or {}
        self.delay = delay
        self.error = error
        self.calls: List[List[str]] = []

    @property
    def model_id(self) -> str:
        return "fake-reranker"

    @property
    def provider_name(self) -> str:
        return "fake"

    async def rerank(
        self, query: str, documents: Sequence[RerankDocument], top_k: int
    ) -> List[RerankScore]:
        self.calls.append([d.id for d in documents])
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        scored = [
            RerankScore(id=d.id, score=self.scores[d.id])
            for d in documents
            if d.id in self.scores
        ]
        return sorted(scored, key=lambda s: (-s.score, s.id))[:top_k]

    async def health_check(self) -> bool:
        return True


class FakeGenerator:
    """Streams canned chunks; records whether the stream was closed."""

    def __init__(
        self,
        chunks: Sequence[str] = ("The answer ", "is 42."),
        delay: float = 0.0,
        error: Optional[Exception] = None,
        fail_after: Optional[int] = None,
    ):
        self.chunks = list(chunks)
        self.delay = delay
        self.error = error
        self.fail_after = fail_after
        self.closed = False
        self.cancelled = False
        self.contexts: List[str] = []

    @property
    def model_id(self) -> str:
        return "fake-llm"

    async def generate_streaming(self, packed_context: str, query: str):
        self.contexts.append(packed_context)
        try:
            for index, chunk in enumerate(self.chunks):
                if self.fail_after is not None and index >= self.fail_after:
                    raise self.error or RuntimeError("generation failed")
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield chunk
            if self.error is not None and self.fail_after is None:
                raise self.error
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        finally:
            self.closed = True


def vector_hit(result_id: str, score: float, content: str = "", **payload) -> SearchResult:
    return SearchResult(
        id=result_id,
        raw_score=score,
        content=content or f"{result_id} vector passage",
        payload=payload,
        origin=ResultOrigin.VECTOR,
    )


def keyword_hit(result_id: str, score: float, content: str = "", **payload) -> SearchResult:
    return SearchResult(
        id=result_id,
        raw_score=score,
        content=content or f"{result_id} keyword passage",
        payload=payload,
        origin=ResultOrigin.KEYWORD,
    )


def fused_result(
    result_id: str,
    score: float,
    content: str = "",
    doc_id: Optional[str] = None,
    **kwargs,
) -> FusedResult:
    payload = kwargs.pop("payload", {})
    if doc_id is not None:
        payload = {**payload, "docId": doc_id}
    return FusedResult(
        id=result_id,
        content=content or f"passage {result_id}",
        payload=payload,
        fusion_score=score,
        final_score=score,
        search_type=kwargs.pop("search_type", SearchType.HYBRID),
        **kwargs,
    )


def quiet_context_config(**overrides) -> ContextConfig:
    """Packing config without bonus reordering or embedding-based novelty."""
    values = {
        "answerability": AnswerabilityBonusConfig(enabled=False),
        "novelty": NoveltyConfig(use_embeddings=False),
    }
    values.update(overrides)
    return ContextConfig(**values)


@pytest.fixture
def tokenizer() -> TokenizerService:
    return make_tokenizer()


@pytest.fixture
def config() -> Config:
    return Config(
        timeouts=TimeoutConfig(
            vector_search=500,
            keyword_search=200,
            reranker=200,
            embedding=500,
            llm=1000,
            overall=3000,
        ),
        context=quiet_context_config(),
    )


@pytest.fixture
def user_context() -> UserContext:
    return UserContext(id="user-1", tenant_id="acme", group_ids=["engineering"])


@pytest.fixture
def admin_context() -> UserContext:
    return UserContext(id="ops", tenant_id="enterprise", group_ids=["admin"])


@pytest.fixture
def search_filter() -> SearchFilter:
    return SearchFilter.from_mapping(
        {"must": [{"key": "tenant_id", "value": "acme"}, {"key": "groups", "any": ["engineering"]}]}
    )


@pytest.fixture
def audit_logger() -> GuardrailAuditLogger:
    return GuardrailAuditLogger()


@pytest.fixture
def make_orchestrator(config, audit_logger):
    """Factory building an orchestrator around fakes; override any collaborator."""

    def _build(
        vector_search=None,
        keyword_search=None,
        reranker=None,
        embedder=None,
        guardrail_config: Optional[GuardrailConfigService] = None,
        cfg: Optional[Config] = None,
    ) -> HybridRetrievalOrchestrator:
        cfg = cfg or config
        embedder = embedder or FakeEmbedder()
        guardrail_config = guardrail_config or GuardrailConfigService(
            cfg.guardrail, audit_logger=audit_logger
        )
        return HybridRetrievalOrchestrator(
            cfg,
            embedder=embedder,
            vector_search=vector_search or FakeSearch(),
            keyword_search=keyword_search,
            reranker=reranker,
            packer=ContextPacker(cfg.context, tokenizer=make_tokenizer()),
            guardrail=AnswerabilityGuardrail(guardrail_config, audit_logger),
            timeout_manager=TimeoutManager(cfg.timeouts),
        )

    return _build
