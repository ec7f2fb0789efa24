"""Rerank provider interface and implementations."""

from .base import RerankDocument, RerankProvider, RerankScore
from .http_service import HttpRerankerService
from .noop import NoopReranker

__all__ = [
    "HttpRerankerService",
    "NoopReranker",
    "RerankDocument",
    "RerankProvider",
    "RerankScore",
]
