"""
Search backend protocols.

Vector and keyword stores sit behind these narrow interfaces. The filter is
the caller-supplied RBAC predicate and must be forwarded unmodified.
"""

from typing import List, Protocol, Sequence, runtime_checkable

from src.query.results import SearchResult
from src.shared.filters import SearchFilter


@runtime_checkable
class VectorSearchService(Protocol):
    async def search(
        self,
        collection: str,
        query_vector: Sequence[float],
        limit: int,
        filter: SearchFilter,
    ) -> List[SearchResult]:
        """Return up to ``limit`` nearest neighbours, best first."""
        ...


@runtime_checkable
class KeywordSearchService(Protocol):
    async def search(
        self,
        collection: str,
        query_text: str,
        limit: int,
        filter: SearchFilter,
    ) -> List[SearchResult]:
        """Return up to ``limit`` lexical matches, best first."""
        ...
