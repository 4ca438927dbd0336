"""Retry-with-backoff for provider calls.

Only TransientProviderError marked retryable is retried; everything else
propagates on the first failure.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import structlog

from chatbridge.core.errors import TransientProviderError

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: wait ``backoff_seconds * 2**attempt`` between tries.

    ``max_retries=0`` means a single attempt.
    """

    max_retries: int = 2
    backoff_seconds: float = 0.5

    def delay_for(self, attempt: int) -> float:
        return self.backoff_seconds * (2 ** attempt)


NO_RETRY = RetryPolicy(max_retries=0, backoff_seconds=0.0)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    op_name: str = "provider.call",
) -> T:
    """Run ``operation`` until it succeeds or the retry budget is spent."""
    attempt = 0
    while True:
        try:
            return await operation()
        except TransientProviderError as e:
            if not e.retryable or attempt >= policy.max_retries:
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "retry.scheduled",
                op=op_name,
                attempt=attempt + 1,
                max_retries=policy.max_retries,
                delay_s=delay,
                status=e.status_code,
                error=str(e),
            )
            attempt += 1
            if delay > 0:
                await asyncio.sleep(delay)
