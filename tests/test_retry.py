from __future__ import annotations

import pytest

from ai_signals.errors import ResponseValidationError, TransientProviderError
from ai_signals.utils.retry import RetryPolicy, run_with_retry


def _build_sleep_recorder() -> tuple[list[float], object]:
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    return delays, _sleep


@pytest.mark.asyncio
async def test_retry_delays_double_and_attempts_are_bounded() -> None:
    delays, sleep = _build_sleep_recorder()
    attempts = 0

    async def _op() -> int:
        nonlocal attempts
        attempts += 1
        raise TimeoutError("request timeout")

    policy = RetryPolicy(max_retries=3, initial_delay=1.0, backoff_factor=2.0, max_delay=10.0)
    with pytest.raises(TimeoutError):
        await run_with_retry(_op, policy, sleep=sleep)  # type: ignore[arg-type]

    assert delays == [1.0, 2.0, 4.0]
    assert attempts == 4


@pytest.mark.asyncio
async def test_retry_delay_is_capped_at_max_delay() -> None:
    delays, sleep = _build_sleep_recorder()

    async def _op() -> int:
        raise ConnectionError("connection reset by peer")

    policy = RetryPolicy(max_retries=4, initial_delay=1.0, backoff_factor=2.0, max_delay=3.0)
    with pytest.raises(ConnectionError):
        await run_with_retry(_op, policy, sleep=sleep)  # type: ignore[arg-type]

    assert delays == [1.0, 2.0, 3.0, 3.0]


@pytest.mark.asyncio
async def test_non_retryable_error_propagates_immediately() -> None:
    delays, sleep = _build_sleep_recorder()
    attempts = 0

    async def _op() -> int:
        nonlocal attempts
        attempts += 1
        raise ValueError("bad symbol")

    with pytest.raises(ValueError):
        await run_with_retry(_op, RetryPolicy(), sleep=sleep)  # type: ignore[arg-type]

    assert attempts == 1
    assert delays == []


@pytest.mark.asyncio
async def test_transient_failures_then_success_returns_value() -> None:
    delays, sleep = _build_sleep_recorder()
    outcomes: list[Exception | int] = [
        TransientProviderError("rate limit exceeded (429 too many requests)"),
        TransientProviderError("server error 503"),
        42,
    ]

    async def _op() -> int:
        item = outcomes.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    result = await run_with_retry(_op, RetryPolicy(), sleep=sleep)  # type: ignore[arg-type]

    assert result == 42
    assert delays == [1.0, 2.0]


def test_classification_uses_kind_and_message() -> None:
    policy = RetryPolicy()

    assert policy.is_retryable(TransientProviderError("anything"))
    assert policy.is_retryable(RuntimeError("Network is unreachable"))
    assert policy.is_retryable(RuntimeError("HTTP 429 Too Many Requests"))
    assert not policy.is_retryable(ResponseValidationError("missing_required_fields: action"))
    assert not policy.is_retryable(KeyError("price"))


def test_command_specific_tokens_extend_the_policy() -> None:
    policy = RetryPolicy().with_tokens("Quota")

    assert policy.is_retryable(RuntimeError("quota exceeded for today"))
    assert not RetryPolicy().is_retryable(RuntimeError("quota exceeded for today"))
    assert policy.max_retries == 3
