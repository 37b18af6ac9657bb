"""Retry with exponential backoff for page fetches and LLM calls."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from siteprompt.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to attempt an operation and how long to wait between tries.

    ``max_attempts`` counts the first call, so ``max_attempts=1`` never retries.
    The delay before retry ``n`` (1-based) is
    ``base_delay * multiplier ** (n - 1)``, capped at ``max_delay``. With
    ``jitter`` the delay is drawn uniformly from ``[delay / 2, delay]``.
    """

    max_attempts: int = 2
    base_delay: float = 1.0
    multiplier: float = 2.0
    jitter: bool = True
    max_delay: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            multiplier=settings.retry_multiplier,
            jitter=settings.retry_jitter,
        )

    def delay_for(self, retry_number: int) -> float:
        """Seconds to wait before the given retry (1-based)."""
        delay = min(self.base_delay * (self.multiplier ** (retry_number - 1)), self.max_delay)
        if self.jitter and delay > 0:
            delay = random.uniform(delay / 2, delay)
        return delay

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        should_retry: Callable[[BaseException], bool] = lambda exc: True,
        operation_name: str = "Operation",
    ) -> T:
        """Await ``operation()`` until it succeeds or attempts run out.

        Exceptions rejected by ``should_retry`` propagate immediately. The last
        exception is re-raised once every attempt has failed.
        """
        attempts = max(1, self.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except Exception as e:
                if attempt >= attempts or not should_retry(e):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{operation_name} failed on attempt {attempt}/{attempts}: {e}. "
                    f"Retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

        # Unreachable: the loop either returns or raises
        raise RuntimeError(f"{operation_name} exhausted retries")
