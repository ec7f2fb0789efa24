"""Search backend interfaces."""

from .base import KeywordSearchService, VectorSearchService

__all__ = ["KeywordSearchService", "VectorSearchService"]
