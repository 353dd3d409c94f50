"""Bounded exponential-backoff retry for async operations."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from ai_signals.utils.logging import get_logger, log_retry_attempt

T = TypeVar("T")

DEFAULT_RETRYABLE_TOKENS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "network",
    "connection",
    "econnreset",
    "rate limit",
    "rate_limit",
    "ratelimit",
    "too many requests",
    "429",
    "server error",
    "temporarily unavailable",
    "transientprovidererror",
)

_logger = get_logger("ai_signals.utils.retry")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry parameters; delays are in seconds."""

    max_retries: int = 3
    initial_delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: float = 10.0
    retryable_tokens: tuple[str, ...] = DEFAULT_RETRYABLE_TOKENS

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(self.initial_delay * self.backoff_factor ** (attempt - 1), self.max_delay)

    def is_retryable(self, exc: BaseException) -> bool:
        """Classify by matching the error kind and message against the token set."""
        haystack = f"{type(exc).__name__} {exc}".lower()
        return any(token in haystack for token in self.retryable_tokens)

    def with_tokens(self, *extra: str) -> RetryPolicy:
        """Copy of this policy with command-specific retryable tokens added."""
        return RetryPolicy(
            max_retries=self.max_retries,
            initial_delay=self.initial_delay,
            backoff_factor=self.backoff_factor,
            max_delay=self.max_delay,
            retryable_tokens=(*self.retryable_tokens, *(t.lower() for t in extra)),
        )


async def run_with_retry(
    op: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    context: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``op`` and retry retryable failures.

    ``op`` is attempted at most ``max_retries + 1`` times. Non-retryable
    errors propagate immediately; after the last attempt the last error is
    re-raised unchanged.
    """

    def _wait(state: RetryCallState) -> float:
        return policy.delay_for(state.attempt_number)

    def _before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        log_retry_attempt(
            _logger,
            context=context,
            attempt=state.attempt_number,
            max_retries=policy.max_retries,
            delay_s=state.next_action.sleep if state.next_action else 0.0,
            error=str(exc),
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_retries + 1),
        wait=_wait,
        retry=retry_if_exception(policy.is_retryable),
        before_sleep=_before_sleep,
        sleep=sleep,
        reraise=True,
    )
    return await retrying(op)
