"""Resilience patterns for distributed system robustness."""

from src.shared.resilience.circuit_breaker import CircuitBreaker, CircuitState
from src.shared.resilience.timeouts import (
    FallbackResult,
    TimeoutManager,
    execute_with_fallback,
    execute_with_timeout,
)

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "FallbackResult",
    "TimeoutManager",
    "execute_with_fallback",
    "execute_with_timeout",
]
