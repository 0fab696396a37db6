"""Retry and circuit-breaker helpers for embedding calls.

Model inference can fail transiently (device memory pressure, a worker
restart) or permanently for one input (a malformed image). Transient
failures are retried with exponential backoff; repeated transient failures
open a breaker so a broken model fails files fast instead of stalling.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, TypeVar

from ..errors import EmbeddingError, EmbeddingTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorCategory(Enum):
    """Classification of errors for retry/circuit breaker behavior."""

    TRANSIENT = "transient"  # Retry, may trip breaker after threshold
    PERMANENT = "permanent"  # Fail this input, never trips breaker


def classify_error(error: Exception) -> ErrorCategory:
    """Classify exception into retry/breaker behavior category."""
    # A timeout means the worker is already saturated; queueing more is pointless
    if isinstance(error, EmbeddingTimeout):
        return ErrorCategory.PERMANENT

    # Bad input (wrong type, undecodable image) will fail the same way again
    if isinstance(error, (TypeError, ValueError, KeyError)):
        return ErrorCategory.PERMANENT

    error_type = type(error).__name__
    if "Decode" in error_type or "Unidentified" in error_type:
        return ErrorCategory.PERMANENT

    # Unknown errors → TRANSIENT (safer to retry)
    return ErrorCategory.TRANSIENT


class CircuitBreaker:
    """Thread-safe circuit breaker around the embedding model.

    Tracks consecutive transient failures and opens (blocks requests) when
    threshold is reached. Auto-resets after reset_seconds.
    """

    def __init__(self, threshold: int = 5, reset_seconds: float = 30.0):
        self.threshold = threshold
        self.reset_seconds = reset_seconds
        self._failure_count = 0
        self._opened_at: float | None = None
        self._lock = threading.Lock()

    def is_open(self) -> bool:
        with self._lock:
            if self._opened_at is None:
                return False
            if time.monotonic() - self._opened_at >= self.reset_seconds:
                self._close()
                return False
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._failure_count > 0:
                logger.debug(f"Circuit breaker: success, resetting failure count from {self._failure_count}")
            self._failure_count = 0

    def record_failure(self, category: ErrorCategory) -> None:
        with self._lock:
            if category == ErrorCategory.TRANSIENT:
                self._failure_count += 1
                logger.debug(f"Circuit breaker: failure {self._failure_count}/{self.threshold}")
                if self._failure_count >= self.threshold:
                    self._open(f"{self.threshold} consecutive failures")

    def _open(self, reason: str) -> None:
        self._opened_at = time.monotonic()
        logger.warning(f"Circuit breaker OPEN: {reason}. Pausing embedding for {self.reset_seconds}s")

    def _close(self) -> None:
        self._opened_at = None
        self._failure_count = 0
        logger.info("Circuit breaker CLOSED: resuming embedding")

    @property
    def state(self) -> str:
        with self._lock:
            if self._opened_at is None:
                return "CLOSED"
            if time.monotonic() - self._opened_at >= self.reset_seconds:
                return "HALF-OPEN"
            return "OPEN"


@dataclass
class RetryPolicy:
    """Wraps embedding calls with retry logic and a circuit breaker.

    Unlike a fire-and-forget client, failures are re-raised as
    EmbeddingError so the caller can account for them per file.
    """

    max_retries: int = 2
    backoff_base_ms: int = 200
    circuit_breaker: CircuitBreaker | None = None
    sleep: Callable[[float], None] = time.sleep

    _breaker: CircuitBreaker = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._breaker = self.circuit_breaker or CircuitBreaker()

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def backoff_s(self, attempt: int) -> float:
        # Exponential backoff: base, 2*base, 4*base...
        return (self.backoff_base_ms / 1000.0) * (2 ** attempt)

    def call(self, fn: Callable[..., T], *args: Any, source: str = "unknown", **kwargs: Any) -> T:
        if self._breaker.is_open():
            raise EmbeddingError(f"Embedding unavailable for {source}: circuit breaker open")

        last: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                result = fn(*args, **kwargs)
                if attempt > 0:
                    logger.debug(f"{source} succeeded on retry {attempt}")
                self._breaker.record_success()
                return result
            except Exception as e:
                last = e
                category = classify_error(e)
                if category == ErrorCategory.PERMANENT:
                    logger.debug(f"{source}: not retrying {type(e).__name__}: {e}")
                    break
                if attempt < self.max_retries:
                    wait = self.backoff_s(attempt)
                    logger.info(
                        f"Retry {attempt + 1}/{self.max_retries} for {source}: "
                        f"{type(e).__name__} (waiting {wait:.2f}s)"
                    )
                    self.sleep(wait)
                else:
                    self._breaker.record_failure(category)

        assert last is not None
        if isinstance(last, EmbeddingError):
            raise last
        raise EmbeddingError(f"Embedding failed for {source}: {type(last).__name__}: {last}") from last
