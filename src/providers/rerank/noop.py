"""
No-op reranker.

Used when reranking is disabled for a tenant and in tests. Scores follow the
incoming order so the fused ranking is preserved.
"""

from typing import List, Sequence

from src.providers.rerank.base import RerankDocument, RerankScore
from src.shared.observability import get_logger

logger = get_logger(__name__)


class NoopReranker:
    """Passthrough reranker that preserves original candidate ordering."""

    def __init__(self):
        self._model_id = "noop"
        self._provider_name = "noop"

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def provider_name(self) -> str:
        return self._provider_name

    async def rerank(
        self, query: str, documents: Sequence[RerankDocument], top_k: int
    ) -> List[RerankScore]:
        scored = [
            RerankScore(id=doc.id, score=1.0 - (idx * 0.01))
            for idx, doc in enumerate(documents[:top_k])
        ]
        logger.debug("noop_rerank", returned=len(scored))
        return scored

    async def health_check(self) -> bool:
        """Always healthy (no external dependency)."""
        return True
