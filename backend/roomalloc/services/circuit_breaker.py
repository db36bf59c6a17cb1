from __future__ import annotations

from enum import Enum
import logging
from threading import Lock
import time
from typing import Callable

from roomalloc.core.config import get_settings
from roomalloc.core.exceptions import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    closed = "closed"
    open = "open"
    half_open = "half_open"


class CircuitBreaker:
    """Consecutive-failure breaker guarding calls to the remote booking API.

    ``closed`` lets every call through. After ``failure_threshold`` consecutive
    failures the breaker opens and :meth:`before_call` raises
    :class:`CircuitOpenError` until ``timeout_seconds`` have passed; the next call
    then runs in ``half_open`` and its outcome closes or re-opens the circuit.
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        failure_threshold: int = 5,
        timeout_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.enabled = enabled
        self.failure_threshold = failure_threshold
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._lock = Lock()
        self._state = CircuitState.closed
        self._failure_count = 0
        self._last_failure_at: float | None = None
        self._opened_at: float | None = None

    @property
    def state(self) -> CircuitState:
        if not self.enabled:
            return CircuitState.closed
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count if self.enabled else 0

    def _recovery_due(self) -> bool:
        return self._opened_at is not None and self._clock() - self._opened_at >= self.timeout_seconds

    def _next_retry_at(self) -> float | None:
        if self._state != CircuitState.open or self._opened_at is None:
            return None
        return self._opened_at + self.timeout_seconds

    def before_call(self) -> None:
        if not self.enabled:
            return
        with self._lock:
            if self._state != CircuitState.open:
                return
            if self._recovery_due():
                self._state = CircuitState.half_open
                logger.info("CIRCUIT BREAKER HALF OPEN | failures=%s", self._failure_count)
                return
            retry_at = self._next_retry_at()
        logger.warning("CIRCUIT BREAKER BLOCKED CALL | next_retry_at=%s", retry_at)
        raise CircuitOpenError(retry_at)

    def record_success(self) -> None:
        if not self.enabled:
            return
        with self._lock:
            if self._state == CircuitState.half_open:
                logger.info("CIRCUIT BREAKER RECOVERED | state=closed")
            self._state = CircuitState.closed
            self._failure_count = 0
            self._opened_at = None

    def record_failure(self, error: Exception | None = None) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._failure_count += 1
            self._last_failure_at = self._clock()
            logger.warning(
                "CIRCUIT BREAKER FAILURE | count=%s | threshold=%s | state=%s | error=%s",
                self._failure_count,
                self.failure_threshold,
                self._state.value,
                error,
            )
            if self._state == CircuitState.half_open or self._failure_count >= self.failure_threshold:
                if self._state != CircuitState.open:
                    logger.error(
                        "CIRCUIT BREAKER OPENED | count=%s | timeout_seconds=%s",
                        self._failure_count,
                        self.timeout_seconds,
                    )
                self._state = CircuitState.open
                self._opened_at = self._last_failure_at

    def force_reset(self) -> None:
        with self._lock:
            self._state = CircuitState.closed
            self._failure_count = 0
            self._last_failure_at = None
            self._opened_at = None
        logger.warning("CIRCUIT BREAKER FORCE RESET")

    def metrics(self) -> dict:
        with self._lock:
            state = self.state
            return {
                "enabled": self.enabled,
                "state": state.value,
                "failure_count": self.failure_count,
                "failure_threshold": self.failure_threshold,
                "timeout_seconds": self.timeout_seconds,
                "last_failure_at": self._last_failure_at,
                "next_retry_at": self._next_retry_at() if self.enabled else None,
                "can_execute": state != CircuitState.open or self._recovery_due(),
            }


_breaker: CircuitBreaker | None = None
_breaker_lock = Lock()


def get_circuit_breaker() -> CircuitBreaker:
    """Process-wide breaker shared by every client instance and job."""
    global _breaker
    with _breaker_lock:
        if _breaker is None:
            settings = get_settings()
            _breaker = CircuitBreaker(
                enabled=settings.salas_circuit_breaker_enabled,
                failure_threshold=settings.salas_circuit_breaker_failure_threshold,
                timeout_seconds=settings.salas_circuit_breaker_timeout_seconds,
            )
        return _breaker


def clear_circuit_breaker() -> None:
    global _breaker
    with _breaker_lock:
        _breaker = None
