"""
Service layer modules for context packing.

Each service encapsulates a narrowly scoped concern (answerability bonus,
novelty selection, token budgeting) and the packer composes them.
"""

from .answerability_bonus import AnswerabilityScorer  # noqa: F401
from .context_budget_manager import BudgetExceeded, ContextBudgetManager  # noqa: F401
from .context_packer import ContextPacker, PackedContext, PackingTrace  # noqa: F401
from .novelty import NoveltySelector  # noqa: F401

__all__ = [
    "AnswerabilityScorer",
    "BudgetExceeded",
    "ContextBudgetManager",
    "ContextPacker",
    "NoveltySelector",
    "PackedContext",
    "PackingTrace",
]
