"""Circuit breaker for the assisted analysis call.

The breaker watches consecutive failures of an awaitable collaborator and
rejects calls immediately while the collaborator is considered down, so a
failing service costs a fast local fallback instead of a full timeout per
document.

States:
- CLOSED: Normal operation, calls pass through
- OPEN: Too many failures, calls rejected immediately
- HALF_OPEN: Probing recovery, a call is let through

Example:
    >>> breaker = CircuitBreaker("ASSISTED", CircuitBreakerConfig(failure_threshold=5))
    >>> result = await breaker.call(client.analyze, path, instructions)
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from hybrid_idp.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker.

    Attributes:
        failure_threshold: Number of failures before opening circuit
        timeout_seconds: How long to keep circuit open before probing again
        success_threshold: Number of successes in HALF_OPEN to close circuit
    """

    failure_threshold: int = 5
    timeout_seconds: float = 60
    success_threshold: int = 1


class CircuitBreaker:
    """Async circuit breaker guarding an external collaborator.

    Args:
        name: Service name for logging and error codes
        config: Circuit breaker configuration
        clock: Monotonic time source, replaceable in tests
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self._clock = clock

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """Await ``func`` with circuit breaker protection.

        Cancellation of the awaited call is not counted as a failure.

        Raises:
            ExternalServiceError: If the circuit is open
            Exception: Whatever ``func`` raises
        """
        if self.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self._transition_to_half_open()
            else:
                raise ExternalServiceError(
                    service_name=self.name,
                    error_type="circuit_open",
                    details={
                        "message": "Circuit breaker is OPEN. Service unavailable.",
                        "retry_after": self._time_until_retry(),
                    },
                )

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _should_attempt_reset(self) -> bool:
        if self.last_failure_time is None:
            return False
        return self._clock() - self.last_failure_time >= self.config.timeout_seconds

    def _time_until_retry(self) -> int:
        if self.last_failure_time is None:
            return 0
        remaining = self.config.timeout_seconds - (self._clock() - self.last_failure_time)
        return max(0, int(remaining))

    def _transition_to_half_open(self) -> None:
        self.state = CircuitState.HALF_OPEN
        self.success_count = 0
        logger.info("Circuit breaker '%s' entering HALF_OPEN state", self.name)

    def _on_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold:
                self._transition_to_closed()
        else:
            self.failure_count = 0

    def _on_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == CircuitState.HALF_OPEN:
            self._transition_to_open("re-OPENED after failure in HALF_OPEN")
        elif self.failure_count >= self.config.failure_threshold:
            self._transition_to_open(f"OPENED after {self.failure_count} failures")

    def _transition_to_closed(self) -> None:
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        logger.info("Circuit breaker '%s' CLOSED", self.name)

    def _transition_to_open(self, reason: str) -> None:
        self.state = CircuitState.OPEN
        logger.warning(
            "Circuit breaker '%s' %s", self.name, reason, extra={"service": self.name}
        )

    def reset(self) -> None:
        """Manually reset circuit breaker to CLOSED state."""
        self._transition_to_closed()

    def get_state(self) -> dict[str, Any]:
        """Get current circuit breaker state for monitoring."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "time_until_retry": self._time_until_retry()
            if self.state == CircuitState.OPEN
            else 0,
        }
