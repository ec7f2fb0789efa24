"""
Tokenizer service for exact token counting and whole-token truncation.

Packed context is measured in the generation model's own tokens, so counts
come from tiktoken's encoding for that model rather than a character
heuristic.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

import tiktoken

from src.shared.observability import get_logger

logger = get_logger(__name__)

DEFAULT_MODEL = "gpt-4o"
FALLBACK_ENCODING = "o200k_base"


class TokenizerBackend(ABC):
    """Abstract base class for tokenizer backends."""

    @abstractmethod
    def encode(self, text: str) -> List[int]:
        """
        Encode text to token IDs.

        Raises:
            RuntimeError: If encoding fails
        """

    @abstractmethod
    def decode(self, token_ids: List[int]) -> str:
        """
        Decode token IDs back to text.

        Raises:
            RuntimeError: If decoding fails
        """


class TiktokenBackend(TokenizerBackend):
    """tiktoken encoding for an OpenAI-family model."""

    def __init__(self, model: str = DEFAULT_MODEL):
        try:
            self._encoding = tiktoken.encoding_for_model(model)
        except KeyError:
            logger.warning(
                "tokenizer_model_unknown", model=model, encoding=FALLBACK_ENCODING
            )
            self._encoding = tiktoken.get_encoding(FALLBACK_ENCODING)
        self.model = model

    @property
    def encoding_name(self) -> str:
        return self._encoding.name

    def encode(self, text: str) -> List[int]:
        return self._encoding.encode(text, disallowed_special=())

    def decode(self, token_ids: List[int]) -> str:
        return self._encoding.decode(token_ids)


class TokenizerService:
    """Token counting and truncation on whole-token boundaries."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        backend: Optional[TokenizerBackend] = None,
    ):
        self.backend = backend or TiktokenBackend(model)
        self.model = model

    def count_tokens(self, text: str) -> int:
        """
        Count exact tokens in text.

        Args:
            text: Input text

        Returns:
            Exact token count
        """
        if not text:
            return 0
        return len(self.backend.encode(text))

    def count_tokens_batch(self, texts: List[str]) -> int:
        return sum(self.count_tokens(text) for text in texts)

    def encode(self, text: str) -> List[int]:
        return self.backend.encode(text)

    def decode_tokens(self, token_ids: List[int]) -> str:
        return self.backend.decode(token_ids)

    def truncate_to_token_limit(self, text: str, max_tokens: int) -> str:
        """
        Truncate text to at most ``max_tokens`` tokens.

        Trailing tokens are removed whole; the result never ends in a
        partial token.

        Args:
            text: Text to truncate
            max_tokens: Maximum tokens to keep

        Returns:
            Truncated text (empty when max_tokens <= 0)
        """
        if max_tokens <= 0:
            return ""
        tokens = self.backend.encode(text)
        if len(tokens) <= max_tokens:
            return text
        return self.backend.decode(tokens[:max_tokens])


def create_tokenizer_service(model: str = DEFAULT_MODEL) -> TokenizerService:
    """
    Factory function to create TokenizerService.

    Returns:
        TokenizerService instance
    """
    return TokenizerService(model=model)
