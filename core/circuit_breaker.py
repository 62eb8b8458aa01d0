"""
Circuit breaker for chain RPC endpoints.

States:
- CLOSED: calls pass through
- OPEN: the endpoint kept failing, calls are rejected immediately
- HALF_OPEN: one probe call is allowed to test recovery

Only ExternalServiceError counts as a failure; an RPC that answered with a
valid "not found" is not an outage.
"""

import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from .errors import ExternalServiceError

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(ExternalServiceError):
    """Raised when a call is rejected because the circuit is open."""


class CircuitBreaker:
    """
    Tracks consecutive failures of one external service.

    After ``failure_threshold`` failures in a row the circuit opens for
    ``recovery_timeout`` seconds; the first call after that is a probe whose
    outcome closes or reopens it.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: Optional[float] = None

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Await ``func`` with circuit breaker protection.

        Raises:
            CircuitOpenError: If the circuit is open
            ExternalServiceError: Propagated from ``func`` after being counted
        """
        if self.state == CircuitState.OPEN:
            if self._clock() - (self.opened_at or 0.0) >= self.recovery_timeout:
                self.state = CircuitState.HALF_OPEN
                logger.info(f"Circuit '{self.name}' half-open, probing")
            else:
                raise CircuitOpenError(f"Circuit '{self.name}' is OPEN", service=self.name)

        try:
            result = await func(*args, **kwargs)
        except ExternalServiceError as e:
            self._on_failure()
            logger.warning(f"Circuit '{self.name}' recorded failure: {e}")
            raise

        self._on_success()
        return result

    def _on_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit '{self.name}' closed after successful probe")
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at = None

    def _on_failure(self) -> None:
        self.failure_count += 1

        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != CircuitState.OPEN:
                logger.warning(
                    f"Circuit '{self.name}' OPEN after {self.failure_count} failures"
                )
            self.state = CircuitState.OPEN
            self.opened_at = self._clock()

    def reset(self) -> None:
        """Close the circuit and forget past failures."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at = None

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN
