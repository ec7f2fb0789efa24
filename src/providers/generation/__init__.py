"""Answer generation interface."""

from .base import GenerationProvider

__all__ = ["GenerationProvider"]
