"""
Tests for the fixed-delay retry policy.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from collectors.retry_strategy import (
    RetryConfig,
    RetryExhaustedError,
    is_retryable_error,
    with_retry,
)


class TestRetryConfig:

    def test_defaults(self):
        """Three attempts, ten seconds apart"""
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.delay_seconds == 10.0

    def test_delay_is_fixed(self):
        """No escalation between attempts"""
        config = RetryConfig(delay_seconds=10.0)
        assert [config.get_wait_seconds(n) for n in (1, 2, 3)] == [10.0, 10.0, 10.0]


class TestWithRetry:

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        func = AsyncMock(return_value="ok")

        assert await with_retry(func, RetryConfig(delay_seconds=0)) == "ok"
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        func = AsyncMock(side_effect=[ConnectionError("a"), ValueError("b"), "ok"])

        assert await with_retry(func, RetryConfig(delay_seconds=0)) == "ok"
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_exhaustion_after_max_attempts(self):
        """Exactly max_attempts calls, then RetryExhaustedError"""
        func = AsyncMock(side_effect=ConnectionError("down"))

        with pytest.raises(RetryExhaustedError) as exc_info:
            await with_retry(func, RetryConfig(max_attempts=3, delay_seconds=0))

        assert func.await_count == 3
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, ConnectionError)

    @pytest.mark.asyncio
    async def test_sleeps_fixed_delay_between_attempts(self):
        func = AsyncMock(side_effect=ConnectionError("down"))

        with patch("collectors.retry_strategy.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(RetryExhaustedError):
                await with_retry(func, RetryConfig(max_attempts=3, delay_seconds=10.0))

        assert [call.args[0] for call in sleep.await_args_list] == [10.0, 10.0]

    @pytest.mark.asyncio
    async def test_non_matching_error_raised_immediately(self):
        func = AsyncMock(side_effect=ValueError("bug"))

        with pytest.raises(ValueError):
            await with_retry(func, RetryConfig(delay_seconds=0), retry_on=(ConnectionError,))
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_on_attempt_reports_attempt_numbers(self):
        seen = []
        func = AsyncMock(side_effect=[ConnectionError("a"), "ok"])

        await with_retry(func, RetryConfig(delay_seconds=0), on_attempt=seen.append)

        assert seen == [1, 2]


class TestIsRetryableError:

    def test_network_errors(self):
        assert is_retryable_error(ConnectionError()) is True
        assert is_retryable_error(httpx.ConnectTimeout("slow")) is True

    def test_http_status(self):
        request = httpx.Request("GET", "https://api.github.com")
        server_error = httpx.HTTPStatusError("5xx", request=request, response=httpx.Response(503, request=request))
        not_found = httpx.HTTPStatusError("404", request=request, response=httpx.Response(404, request=request))

        assert is_retryable_error(server_error) is True
        assert is_retryable_error(not_found) is False

    def test_programming_errors(self):
        assert is_retryable_error(ValueError()) is False
