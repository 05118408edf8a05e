"""Tests for the retry combinator."""

import pytest
from unittest.mock import AsyncMock, patch

from storyteller.utils.retry import NonRetryableError, backoff_delay, is_retryable_error, retry_async


class TestClassification:
    def test_terminal_markers(self):
        assert not is_retryable_error(RuntimeError("Your request was rejected by content_policy"))
        assert not is_retryable_error(RuntimeError("Invalid API key provided"))
        assert not is_retryable_error(ValueError("invalid input: prompt too long"))

    def test_transient_errors_are_retryable(self):
        assert is_retryable_error(TimeoutError("read timed out"))
        assert is_retryable_error(RuntimeError("503 Service Unavailable"))

    def test_explicit_terminal_error(self):
        assert not is_retryable_error(NonRetryableError("quota exhausted for today"))

    def test_backoff_doubles(self):
        assert [backoff_delay(a) for a in range(1, 4)] == [2, 4, 8]
        assert backoff_delay(2, base_delay=0.5) == 2.0


class TestRetryAsync:
    async def test_success_on_first_attempt(self):
        op = AsyncMock(return_value="ok")
        assert await retry_async(op, max_attempts=3, base_delay=0) == "ok"
        assert op.await_count == 1

    async def test_transient_failures_are_retried(self):
        op = AsyncMock(side_effect=[TimeoutError("t1"), TimeoutError("t2"), "done"])
        assert await retry_async(op, max_attempts=3, base_delay=0) == "done"
        assert op.await_count == 3

    async def test_waits_two_then_four_seconds(self):
        op = AsyncMock(side_effect=[TimeoutError("t1"), TimeoutError("t2"), "done"])
        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await retry_async(op, max_attempts=3, base_delay=1.0) == "done"
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]

    async def test_last_error_raised_after_exhaustion(self):
        op = AsyncMock(side_effect=TimeoutError("still down"))
        with pytest.raises(TimeoutError, match="still down"):
            await retry_async(op, max_attempts=3, base_delay=0)
        assert op.await_count == 3

    async def test_terminal_error_aborts_immediately(self):
        op = AsyncMock(side_effect=RuntimeError("content_policy_violation"))
        with pytest.raises(RuntimeError):
            await retry_async(op, max_attempts=5, base_delay=0)
        assert op.await_count == 1

    async def test_non_retryable_error_type_aborts(self):
        op = AsyncMock(side_effect=NonRetryableError("account suspended"))
        with pytest.raises(NonRetryableError):
            await retry_async(op, max_attempts=4, base_delay=0)
        assert op.await_count == 1

    async def test_custom_predicate(self):
        op = AsyncMock(side_effect=[KeyError("x"), "ok"])
        result = await retry_async(op, max_attempts=2, base_delay=0,
                                   is_retryable=lambda exc: isinstance(exc, KeyError))
        assert result == "ok"
