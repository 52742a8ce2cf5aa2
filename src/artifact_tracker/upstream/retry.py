from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from artifact_tracker.config.models import GitHubSettings
from artifact_tracker.core.errors import UpstreamTransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    Bounded exponential backoff for transient upstream failures.

    Only UpstreamTransientError is retried. Authentication, not-found and rate-limit
    failures propagate on the first attempt.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @classmethod
    def from_settings(cls, settings: GitHubSettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            initial_delay=settings.initial_retry_delay_seconds,
            multiplier=settings.retry_backoff_multiplier,
        )

    def delay_for(self, attempt: int) -> float:
        return self.initial_delay * (self.multiplier**attempt)

    async def run(self, operation: Callable[[], Awaitable[T]], *, description: str) -> T:
        last_error: UpstreamTransientError | None = None
        for attempt in range(max(1, self.max_attempts)):
            try:
                return await operation()
            except UpstreamTransientError as e:
                last_error = e
                if attempt + 1 >= self.max_attempts:
                    break
                delay = self.delay_for(attempt)
                logger.warning(
                    "Upstream request failed and will be retried. target=%s attempt=%s delay=%.2fs error=%s",
                    description,
                    attempt + 1,
                    delay,
                    e,
                )
                await self.sleep(delay)

        if last_error is not None:
            logger.error(
                "Upstream request failed after exhausting retries. target=%s attempts=%s",
                description,
                self.max_attempts,
            )
            raise last_error
        raise RuntimeError("Max retries exceeded")
