"""
Bounded exponential backoff for provider calls.
"""

import asyncio
import logging
from collections.abc import Awaitable
from datetime import timedelta
from typing import Callable, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from pocketassist.errors import HttpError, RateLimited

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=5, ge=0)
    backoff_factor: float = Field(default=2, ge=1)
    backoff_min: timedelta = timedelta(seconds=1)
    backoff_max: timedelta = timedelta(seconds=60)
    # 403 is ambiguous (quota vs. permission); kept retryable unless configured otherwise.
    retry_statuses: frozenset[int] = frozenset({403, 429})

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (1-based)."""
        delay = self.backoff_min.total_seconds() * self.backoff_factor ** (attempt - 1)
        return min(delay, self.backoff_max.total_seconds())

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, RateLimited):
            return True
        return isinstance(exc, HttpError) and exc.status_code in self.retry_statuses


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    description: str = "operation",
) -> T:
    """
    Run ``operation`` and retry it on retryable failures.

    Non-retryable errors propagate immediately. After ``policy.max_retries``
    retries the last error propagates.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        policy: Attempt cap and backoff schedule.
        is_retryable: Overrides ``policy.is_retryable``.
        sleep: Injected for tests.
        description: Used in log lines only.
    """
    check = is_retryable or policy.is_retryable
    attempt = 0
    while True:
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not check(e) or attempt >= policy.max_retries:
                raise
            attempt += 1
            delay = policy.delay_for(attempt)
            logger.info(
                f"Retrying {description} after {delay}s "
                f"(attempt {attempt + 1}/{policy.max_retries + 1}): {e}"
            )
            await sleep(delay)
