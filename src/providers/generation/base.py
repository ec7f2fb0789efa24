"""
Answer generation protocol.

The LLM call is an external collaborator. It streams text chunks and must
stop promptly when the consuming task is cancelled.
"""

from typing import AsyncIterator, Protocol, runtime_checkable


@runtime_checkable
class GenerationProvider(Protocol):
    @property
    def model_id(self) -> str:
        ...

    def generate_streaming(self, packed_context: str, query: str) -> AsyncIterator[str]:
        """
        Stream answer text for ``query`` grounded in ``packed_context``.

        Returns:
            Async iterator of text chunks. Closing the iterator (``aclose``)
            releases the underlying call.
        """
        ...
