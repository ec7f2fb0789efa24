"""
Base rerank provider protocol.

Reranking is applied after fusion to refine candidate ordering with a
cross-encoder. It is optional: any failure leaves the fused order in place.
"""

from dataclasses import dataclass
from typing import List, Protocol, Sequence, runtime_checkable


@dataclass(frozen=True)
class RerankDocument:
    id: str
    text: str


@dataclass(frozen=True)
class RerankScore:
    id: str
    score: float


@runtime_checkable
class RerankProvider(Protocol):
    """
    Protocol for reranking providers.

    All reranking providers must implement this interface to ensure
    compatibility with the query pipeline.
    """

    @property
    def model_id(self) -> str:
        """
        Get the model identifier.

        Returns:
            str: Model identifier (e.g., "BAAI/bge-reranker-large")
        """
        ...

    @property
    def provider_name(self) -> str:
        """
        Get the provider name.

        Returns:
            str: Provider name (e.g., "http-reranker", "noop")
        """
        ...

    async def rerank(
        self, query: str, documents: Sequence[RerankDocument], top_k: int
    ) -> List[RerankScore]:
        """
        Score documents for relevance to query.

        Args:
            query: Query text
            documents: Candidates to score
            top_k: Maximum number of scores to return

        Returns:
            Scores sorted descending; documents the service did not score are
            simply absent.

        Raises:
            UpstreamUnavailable: If the service cannot be reached or rejects
                the request after retries
        """
        ...

    async def health_check(self) -> bool:
        """Lightweight readiness probe."""
        ...
