"""Unit tests for RetryStrategy (ai_agent.retry).

Tests cover:
- RetryPolicy validation and named policies
- is_retryable classification
- delays(): count, cap, monotonicity
- run(): success, fatal errors, exhaustion, validation retry budget, on_retry
"""

from __future__ import annotations

import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from ai_agent.errors import ConfigurationError, PipelineError, ProviderError, ValidationError
from ai_agent.retry import (
    DEFAULT_POLICY,
    STREAMING_POLICY,
    VALIDATION_POLICY,
    RetryPolicy,
    RetryStrategy,
)


def _retryable() -> ProviderError:
    return ProviderError("rate limited", status=429, status_class="rate_limited", retryable=True)


def _fatal() -> ProviderError:
    return ProviderError("bad key", status=401, status_class="client", retryable=False)


# ---------------------------------------------------------------------------
# RetryPolicy
# ---------------------------------------------------------------------------


class TestRetryPolicy:
    @pytest.mark.unit
    def test_defaults(self):
        assert DEFAULT_POLICY.max_attempts == 3
        assert DEFAULT_POLICY.base_delay == 1.0
        assert DEFAULT_POLICY.max_delay == 10.0

    @pytest.mark.unit
    def test_streaming_policy_is_stricter(self):
        assert STREAMING_POLICY.max_attempts < DEFAULT_POLICY.max_attempts
        assert STREAMING_POLICY.max_delay < DEFAULT_POLICY.max_delay

    @pytest.mark.unit
    def test_validation_policy_is_immediate(self):
        strategy = RetryStrategy(VALIDATION_POLICY)
        assert list(strategy.delays()) == [0.0]

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "kwargs", [{"max_attempts": 0}, {"base_delay": -1}, {"factor": 0.5}]
    )
    def test_invalid_policy(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


# ---------------------------------------------------------------------------
# Classification & backoff
# ---------------------------------------------------------------------------


class TestClassification:
    @pytest.mark.unit
    def test_retryable_provider_error(self):
        assert RetryStrategy().is_retryable(_retryable()) is True

    @pytest.mark.unit
    def test_fatal_provider_error(self):
        assert RetryStrategy().is_retryable(_fatal()) is False

    @pytest.mark.unit
    def test_non_taxonomy_error_is_fatal(self):
        assert RetryStrategy().is_retryable(RuntimeError("x")) is False

    @pytest.mark.unit
    def test_retry_on_restricts_types(self):
        strategy = RetryStrategy(retry_on=(ValidationError,))
        assert strategy.is_retryable(_retryable()) is False
        assert strategy.is_retryable(ValidationError("intent", [])) is True


class TestDelays:
    @pytest.mark.unit
    def test_count_is_attempts_minus_one(self):
        assert len(list(RetryStrategy(RetryPolicy(max_attempts=5)).delays())) == 4

    @pytest.mark.unit
    def test_capped_and_monotonic(self):
        policy = RetryPolicy(max_attempts=8, base_delay=1.0, max_delay=5.0, jitter=0.5)
        for seed in range(20):
            delays = list(RetryStrategy(policy, rng=random.Random(seed)).delays())
            assert all(d <= policy.max_delay for d in delays)
            assert all(a <= b for a, b in zip(delays, delays[1:]))

    @pytest.mark.unit
    def test_without_jitter_is_exponential(self):
        policy = RetryPolicy(max_attempts=4, base_delay=1.0, max_delay=100.0, jitter=0.0)
        assert list(RetryStrategy(policy).delays()) == [1.0, 2.0, 4.0]


# ---------------------------------------------------------------------------
# run()
# ---------------------------------------------------------------------------


class TestRun:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_success_first_try(self):
        sleep = AsyncMock()
        thunk = AsyncMock(return_value="ok")
        assert await RetryStrategy(sleep=sleep).run(thunk) == "ok"
        assert thunk.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        sleep = AsyncMock()
        thunk = AsyncMock(side_effect=[_retryable(), _retryable(), "ok"])
        assert await RetryStrategy(sleep=sleep).run(thunk) == "ok"
        assert thunk.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_never_exceeds_max_attempts(self):
        thunk = AsyncMock(side_effect=_retryable())
        with pytest.raises(ProviderError) as info:
            await RetryStrategy(RetryPolicy(max_attempts=3), sleep=AsyncMock()).run(thunk)
        assert thunk.await_count == 3
        assert info.value.attempts == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fatal_error_not_retried(self):
        thunk = AsyncMock(side_effect=_fatal())
        with pytest.raises(ProviderError) as info:
            await RetryStrategy(sleep=AsyncMock()).run(thunk)
        assert thunk.await_count == 1
        assert info.value.attempts == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_configuration_error_not_retried(self):
        thunk = AsyncMock(side_effect=ConfigurationError("no key"))
        with pytest.raises(ConfigurationError):
            await RetryStrategy(sleep=AsyncMock()).run(thunk)
        assert thunk.await_count == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_non_pipeline_error_propagates(self):
        thunk = AsyncMock(side_effect=KeyError("x"))
        with pytest.raises(KeyError):
            await RetryStrategy(sleep=AsyncMock()).run(thunk)
        assert thunk.await_count == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_validation_error_retried_once_only(self):
        policy = RetryPolicy(max_attempts=5, base_delay=0.0, jitter=0.0, validation_retries=1)
        thunk = AsyncMock(side_effect=ValidationError("intent", [{"path": "x", "message": "y"}]))
        with pytest.raises(ValidationError) as info:
            await RetryStrategy(policy, sleep=AsyncMock()).run(thunk)
        assert thunk.await_count == 2
        assert info.value.attempts == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_error_outside_retry_on_keeps_its_attempt_count(self):
        error = _retryable()
        error.attempts = 3
        thunk = AsyncMock(side_effect=error)
        strategy = RetryStrategy(VALIDATION_POLICY, retry_on=(ValidationError,), sleep=AsyncMock())
        with pytest.raises(ProviderError) as info:
            await strategy.run(thunk)
        assert thunk.await_count == 1
        assert info.value.attempts == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_on_retry_called_with_attempt_and_delay(self):
        on_retry = MagicMock()
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, jitter=0.0)
        thunk = AsyncMock(side_effect=[_retryable(), "ok"])
        await RetryStrategy(policy, sleep=AsyncMock()).run(thunk, on_retry=on_retry)
        on_retry.assert_called_once()
        attempt, exc, delay = on_retry.call_args.args
        assert attempt == 1
        assert isinstance(exc, PipelineError)
        assert delay == 1.0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_zero_delay_skips_sleep(self):
        sleep = AsyncMock()
        thunk = AsyncMock(side_effect=[ValidationError("code", []), "ok"])
        await RetryStrategy(VALIDATION_POLICY, sleep=sleep).run(thunk)
        sleep.assert_not_awaited()
