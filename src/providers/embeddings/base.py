"""
Base embedding provider protocol.

The embedding model server is an external collaborator. The retrieval core
uses it for the query vector and, optionally, for novelty scoring during
context packing.
"""

from typing import List, Protocol, runtime_checkable


@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Protocol for embedding providers.

    Vectors are plain lists of floats so they stay JSON serializable.
    """

    async def embed(self, text: str) -> List[float]:
        """
        Embed a single text.

        Args:
            text: Query or passage text

        Returns:
            List[float]: Embedding vector

        Raises:
            Exception: Any transport or model failure; callers wrap the call
                in a stage timeout and decide whether the failure is fatal.
        """
        ...
