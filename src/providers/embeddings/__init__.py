"""Embedding provider interface."""

from .base import EmbeddingProvider

__all__ = ["EmbeddingProvider"]
