"""
ContextBudgetManager enforces the token budget of packed context.

Results are admitted in order. The first result that would overflow the
budget is truncated on whole-token boundaries to whatever budget remains, and
everything after it is dropped. Counts come from the generation model's own
tokenizer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from src.providers.tokenizer_service import TokenizerService
from src.query.results import FusedResult
from src.shared.config import TokenBudgetConfig
from src.shared.observability import get_logger

logger = get_logger(__name__)


class BudgetExceeded(RuntimeError):
    """Raised when a consume() call would exceed the token budget."""

    def __init__(self, limit_reason: str, message: str, usage: Dict[str, int]):
        super().__init__(message)
        self.limit_reason = limit_reason
        self.usage = usage


@dataclass
class BudgetedResult:
    result: FusedResult
    tokens: int
    truncated: bool = False


@dataclass
class BudgetOutcome:
    kept: List[BudgetedResult] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)
    tokens_used: int = 0

    @property
    def results(self) -> List[FusedResult]:
        return [item.result for item in self.kept]

    @property
    def truncated_ids(self) -> List[str]:
        return [item.result.id for item in self.kept if item.truncated]


@dataclass
class ContextBudgetManager:
    token_budget: int
    safety_margin: int = 0
    tokenizer: Optional[TokenizerService] = None

    def __post_init__(self) -> None:
        if self.token_budget <= 0:
            raise ValueError("Budgets must be positive integers")
        if self.safety_margin < 0:
            raise ValueError("safety_margin must be non-negative")
        if self.tokenizer is None:
            self.tokenizer = TokenizerService()
        self._tokens_used = 0

    @classmethod
    def from_config(
        cls, config: TokenBudgetConfig, tokenizer: Optional[TokenizerService] = None
    ) -> "ContextBudgetManager":
        return cls(
            token_budget=config.token_budget,
            safety_margin=config.safety_margin,
            tokenizer=tokenizer or TokenizerService(model=config.model),
        )

    @property
    def effective_budget(self) -> int:
        return max(0, self.token_budget - self.safety_margin)

    @property
    def remaining(self) -> int:
        return max(0, self.effective_budget - self._tokens_used)

    @property
    def usage(self) -> Dict[str, int]:
        return {"tokens": self._tokens_used, "budget": self.effective_budget}

    def reset(self) -> None:
        self._tokens_used = 0

    def count_tokens(self, text: str) -> int:
        return self.tokenizer.count_tokens(text)

    def can_consume(self, tokens: int) -> bool:
        return self._tokens_used + tokens <= self.effective_budget

    def consume(self, tokens: int) -> None:
        if not self.can_consume(tokens):
            raise BudgetExceeded(
                limit_reason="token_cap",
                message=(
                    f"Budget exhausted (tokens={tokens}, used={self._tokens_used}, "
                    f"budget={self.effective_budget})"
                ),
                usage=self.usage,
            )
        self._tokens_used += tokens

    def truncate_within(self, text: str, max_tokens: int) -> Tuple[str, int]:
        """
        Truncate ``text`` so that its re-encoded length fits ``max_tokens``.

        A cut inside a multi-byte character decodes to U+FFFD, which can
        encode to more tokens than were kept; the cut moves back until the
        count fits.

        Returns:
            (truncated text, its token count); ("", 0) when nothing fits
        """
        limit = max_tokens
        while limit > 0:
            truncated = self.tokenizer.truncate_to_token_limit(text, limit)
            tokens = self.count_tokens(truncated)
            if tokens <= max_tokens:
                return truncated, tokens
            limit -= tokens - max_tokens
        return "", 0

    def fit(self, results: Sequence[FusedResult]) -> BudgetOutcome:
        """
        Admit results in order until the budget is spent.

        The overflowing result is truncated in place (its ``content`` is
        replaced) when any budget remains, otherwise dropped.
        """
        self.reset()
        outcome = BudgetOutcome()

        for index, result in enumerate(results):
            tokens = self.count_tokens(result.content)
            if self.can_consume(tokens):
                self.consume(tokens)
                outcome.kept.append(BudgetedResult(result=result, tokens=tokens))
                continue

            text, truncated_tokens = self.truncate_within(result.content, self.remaining)
            if truncated_tokens > 0:
                result.content = text
                self.consume(truncated_tokens)
                outcome.kept.append(
                    BudgetedResult(result=result, tokens=truncated_tokens, truncated=True)
                )
            else:
                outcome.dropped.append(result.id)

            outcome.dropped.extend(r.id for r in results[index + 1 :])
            logger.info(
                "context_budget_exhausted",
                kept=len(outcome.kept),
                dropped=len(outcome.dropped),
                tokens_used=self._tokens_used,
                budget=self.effective_budget,
            )
            break

        outcome.tokens_used = self._tokens_used
        return outcome
