"""
Bounded Retry Policy

The single retry mechanism used by the risk data client, the private relay
submission path and idempotent chain reads.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine, Optional, TypeVar

from .errors import RecoverableError, UnrecoverableError, classify_error

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    initial_delay_seconds: float = 0.3
    max_delay_seconds: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.2

    def get_delay(self, attempt: int) -> float:
        """Calculate delay after the given (zero-based) failed attempt."""
        delay = min(
            self.initial_delay_seconds * (self.exponential_base ** attempt),
            self.max_delay_seconds,
        )
        if self.jitter:
            jitter_range = delay * self.jitter_factor
            delay += random.uniform(-jitter_range, jitter_range)
        return max(delay, 0)


def default_retryable(error: Exception) -> bool:
    if isinstance(error, UnrecoverableError):
        return False
    if isinstance(error, RecoverableError):
        return True
    return classify_error(error).recoverable


class RetryPolicy:
    """
    Runs an async operation up to ``max_attempts`` times.

    Only errors accepted by ``retryable`` are retried; anything else propagates
    immediately. A ``retry_after`` hint on the error overrides the computed
    backoff, capped at ``max_delay_seconds``.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        retryable: Callable[[Exception], bool] = default_retryable,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or RetryConfig()
        self.retryable = retryable
        self._sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

    async def run(
        self,
        operation: Callable[[], Coroutine[Any, Any, T]],
        description: str = "operation",
    ) -> T:
        attempts = max(self.config.max_attempts, 1)

        for attempt in range(attempts):
            try:
                return await operation()
            except Exception as e:
                if attempt >= attempts - 1 or not self.retryable(e):
                    raise

                delay = self._get_delay(e, attempt)
                self.logger.warning(
                    f"{description} attempt {attempt + 1}/{attempts} failed: {e}. "
                    f"Retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

        raise RuntimeError("unreachable")

    def _get_delay(self, error: Exception, attempt: int) -> float:
        if isinstance(error, RecoverableError) and error.retry_after:
            return min(error.retry_after, self.config.max_delay_seconds)
        return self.config.get_delay(attempt)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a ``Retry-After`` header given in seconds."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None
