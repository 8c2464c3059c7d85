"""
Unit Tests for the Collaborator Retry Policy

Tests:
- Error classification (transient vs permanent)
- Exponential backoff with a cap
- Retry of timeouts, transport errors and 5xx
- No retry of 4xx or malformed responses

Run with: pytest tests/test_retry_policy.py -v
"""

import pytest
import httpx
from unittest.mock import AsyncMock

from services.retry_policy import (
    RetryConfig,
    call_with_retry,
    decode_json,
    is_retryable,
    raise_for_response,
)
from utils.errors import UpstreamError


class TestClassification:
    """Test which failures are retried."""

    def test_server_errors_retryable(self):
        assert is_retryable(UpstreamError("ghl", "HTTP 503", status_code=503)) is True

    def test_client_errors_not_retryable(self):
        assert is_retryable(UpstreamError("ghl", "HTTP 404", status_code=404)) is False
        assert is_retryable(UpstreamError("ghl", "HTTP 401", status_code=401)) is False

    def test_transport_errors_retryable(self):
        assert is_retryable(UpstreamError("ghl", "timeout", transient=True)) is True
        assert is_retryable(httpx.ConnectError("refused")) is True
        assert is_retryable(httpx.ReadTimeout("slow")) is True

    def test_malformed_response_not_retryable(self):
        assert is_retryable(UpstreamError("ghl", "Malformed response body")) is False

    def test_other_exceptions_not_retryable(self):
        assert is_retryable(ValueError("bug")) is False


class TestBackoff:
    """Test delay computation."""

    def test_exponential_delays(self):
        config = RetryConfig(initial_delay=1.0, backoff_multiplier=2.0, max_delay=10.0)

        assert [config.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_delay_capped(self):
        config = RetryConfig(initial_delay=1.0, backoff_multiplier=2.0, max_delay=5.0)

        assert config.delay_for(10) == 5.0


class TestResponses:
    """Test response helpers."""

    def test_raise_for_response_passes_2xx(self):
        raise_for_response("ghl", httpx.Response(204))

    def test_raise_for_response_carries_status(self):
        with pytest.raises(UpstreamError) as exc_info:
            raise_for_response("wordpress", httpx.Response(500, text="oops"))

        assert exc_info.value.status_code == 500
        assert exc_info.value.collaborator == "wordpress"

    def test_decode_json_malformed(self):
        with pytest.raises(UpstreamError) as exc_info:
            decode_json("ghl", httpx.Response(200, text="<html>"))

        assert exc_info.value.transient is False
        assert exc_info.value.status_code is None


class TestCallWithRetry:
    """Test the retry loop."""

    @pytest.fixture
    def sleep(self):
        return AsyncMock()

    @pytest.mark.asyncio
    async def test_success_first_try(self, sleep):
        operation = AsyncMock(return_value="ok")

        assert await call_with_retry(operation, "ghl", RetryConfig(), sleep=sleep) == "ok"
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, sleep):
        operation = AsyncMock(side_effect=[
            httpx.ConnectTimeout("slow"),
            UpstreamError("ghl", "HTTP 502", status_code=502),
            "ok",
        ])

        result = await call_with_retry(operation, "ghl", RetryConfig(max_attempts=3), sleep=sleep)

        assert result == "ok"
        assert operation.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, sleep):
        operation = AsyncMock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(UpstreamError) as exc_info:
            await call_with_retry(operation, "wordpress", RetryConfig(max_attempts=3), sleep=sleep)

        assert operation.await_count == 3
        assert exc_info.value.transient is True
        assert "Connection failed" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, sleep):
        operation = AsyncMock(side_effect=UpstreamError("ghl", "HTTP 404", status_code=404))

        with pytest.raises(UpstreamError) as exc_info:
            await call_with_retry(operation, "ghl", RetryConfig(max_attempts=3), sleep=sleep)

        assert operation.await_count == 1
        assert exc_info.value.status_code == 404
        sleep.assert_not_called()
