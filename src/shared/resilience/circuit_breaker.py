"""
Thread-safe circuit breaker for calls to optional upstream services.

Usage:
    cb = CircuitBreaker(name="reranker", failure_threshold=5, recovery_timeout=30.0)

    cb.guard("reranker")          # raises UpstreamUnavailable while open
    try:
        result = await call_reranker()
    except Exception:
        cb.record_failure()
        raise
    cb.record_success()
"""

from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Optional

from src.shared.errors import UpstreamUnavailable
from src.shared.observability import get_logger

logger = get_logger(__name__)

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RECOVERY_TIMEOUT = 30.0


class CircuitState(Enum):
    CLOSED = "closed"  # requests pass through
    OPEN = "open"  # fail fast
    HALF_OPEN = "half_open"  # one probe request allowed


class CircuitBreaker:
    """
    Circuit breaker guarding a single upstream.

    CLOSED counts consecutive failures and opens at ``failure_threshold``.
    OPEN rejects until ``recovery_timeout`` seconds have passed since the last
    failure, then moves to HALF_OPEN. HALF_OPEN closes on the next success and
    reopens on the next failure.

    The lock makes transitions safe when the breaker is shared by concurrent
    requests running in worker threads as well as on the event loop.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        recovery_timeout: float = DEFAULT_RECOVERY_TIMEOUT,
    ) -> None:
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be positive")
        if recovery_timeout <= 0:
            raise ValueError("recovery_timeout must be positive")

        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    def allow_request(self) -> bool:
        """Return True when a call may proceed; moves OPEN to HALF_OPEN on expiry."""
        with self._lock:
            if self._state != CircuitState.OPEN:
                return True

            if self._last_failure_time is not None:
                elapsed = time.monotonic() - self._last_failure_time
                if elapsed >= self.recovery_timeout:
                    self._state = CircuitState.HALF_OPEN
                    logger.info(
                        "circuit_breaker_half_open",
                        name=self.name,
                        elapsed_seconds=round(elapsed, 3),
                    )
                    return True
            return False

    def guard(self, stage: str) -> None:
        """Raise UpstreamUnavailable if the circuit rejects the call."""
        if not self.allow_request():
            logger.warning("circuit_breaker_rejected", name=self.name, stage=stage)
            raise UpstreamUnavailable(stage, RuntimeError(f"circuit {self.name} open"))

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                logger.info("circuit_breaker_closed", name=self.name)
            self._state = CircuitState.CLOSED
            self._failure_count = 0

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = time.monotonic()

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                logger.warning("circuit_breaker_reopened", name=self.name)
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                self._state = CircuitState.OPEN
                logger.warning(
                    "circuit_breaker_opened",
                    name=self.name,
                    failure_count=self._failure_count,
                    threshold=self.failure_threshold,
                )

    def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._last_failure_time = None

    def __repr__(self) -> str:
        with self._lock:
            return (
                f"CircuitBreaker(name={self.name!r}, state={self._state.value}, "
                f"failures={self._failure_count}/{self.failure_threshold})"
            )
