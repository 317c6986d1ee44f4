"""Unit tests for RetryPolicy and the retry decorator."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from identity_core.runtime.errors import RetryableError, TerminalError
from identity_core.runtime.retry import DEFAULT_RETRY_POLICY, RetryPolicy, with_retry


class TestRetryPolicy:
    def test_defaults(self):
        assert DEFAULT_RETRY_POLICY.max_attempts == 3
        assert DEFAULT_RETRY_POLICY.retry_on_status == (429, 502, 503, 504)

    def test_is_frozen(self):
        policy = RetryPolicy()

        with pytest.raises(Exception):
            policy.max_attempts = 10

    def test_delay_grows_and_is_capped(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=3.0, jitter=False)

        assert policy.calculate_delay(0) == 1.0
        assert policy.calculate_delay(1) == 2.0
        assert policy.calculate_delay(5) == 3.0

    def test_jitter_adds_at_most_a_quarter(self):
        policy = RetryPolicy(base_delay=1.0, jitter=True)

        for _ in range(20):
            assert 1.0 <= policy.calculate_delay(0) <= 1.25


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_retries_retryable_errors(self):
        calls = AsyncMock(side_effect=[RetryableError("internal", "flaky"), "ok"])

        @with_retry(RetryPolicy(max_attempts=3, base_delay=0.0, jitter=False))
        async def operation():
            return await calls()

        with patch.object(asyncio, "sleep", AsyncMock()):
            assert await operation() == "ok"
        assert calls.call_count == 2

    @pytest.mark.asyncio
    async def test_terminal_errors_are_not_retried(self):
        calls = AsyncMock(side_effect=TerminalError("invalid_argument", "bad"))

        @with_retry(RetryPolicy(max_attempts=3))
        async def operation():
            return await calls()

        with pytest.raises(TerminalError):
            await operation()
        assert calls.call_count == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        calls = AsyncMock(side_effect=RetryableError("internal", "down"))

        @with_retry(RetryPolicy(max_attempts=2, base_delay=0.0, jitter=False))
        async def operation():
            return await calls()

        with patch.object(asyncio, "sleep", AsyncMock()):
            with pytest.raises(RetryableError):
                await operation()
        assert calls.call_count == 2
