"""Tests for retry_with_backoff and supporting functions.

Verifies:
- First-call success returns immediately with no retry.
- Retryable HTTP status codes (429, 500, 502, 503, 504) are retried up to max_retries.
- Auth failures (401, 403) are NEVER retried and raise StoreAuthError.
- A 403 whose body reports quota exhaustion is treated as 429.
- Other client errors raise StoreAPIError without retry.
- Transport errors (connect errors, timeouts) are retried.
- Retry exhaustion raises StoreUnavailableError, keeping Retry-After.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import httpx

from daily_tally.store.retry import (
    retry_with_backoff,
    _parse_retry_after,
    _compute_delay,
    _is_quota_error,
)
from daily_tally.store.exceptions import (
    StoreAPIError,
    StoreAuthError,
    StoreUnavailableError,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_http_error(status_code: int, retry_after=None, text=None) -> httpx.HTTPStatusError:
    """Build a mock httpx.HTTPStatusError with the given status code."""
    response = MagicMock(spec=httpx.Response)
    response.status_code = status_code
    response.text = text if text is not None else f"Error {status_code}"
    response.headers = (
        {"Retry-After": str(retry_after)} if retry_after else {}
    )
    request = MagicMock(spec=httpx.Request)
    return httpx.HTTPStatusError(
        f"{status_code}", request=request, response=response
    )


pytestmark = pytest.mark.asyncio


# ---------------------------------------------------------------------------
# Success / retryable status codes
# ---------------------------------------------------------------------------

@patch("daily_tally.store.retry.asyncio.sleep", new_callable=AsyncMock)
async def test_success_no_retry(mock_sleep):
    """Function succeeds on first call -- no retry, returns result."""
    fn = AsyncMock(return_value="ok")

    result = await retry_with_backoff(fn, max_retries=3)

    assert result == "ok"
    assert fn.await_count == 1
    mock_sleep.assert_not_awaited()


@pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
@patch("daily_tally.store.retry.asyncio.sleep", new_callable=AsyncMock)
async def test_retryable_status(mock_sleep, status):
    """Retryable statuses are retried; succeeds on second attempt."""
    fn = AsyncMock(side_effect=[_make_http_error(status), "ok"])

    result = await retry_with_backoff(fn, max_retries=3, base_delay=0.01)

    assert result == "ok"
    assert fn.await_count == 2
    assert mock_sleep.await_count == 1


@patch("daily_tally.store.retry.asyncio.sleep", new_callable=AsyncMock)
async def test_args_forwarded(mock_sleep):
    """Positional and keyword arguments reach the wrapped function."""
    fn = AsyncMock(return_value="ok")

    await retry_with_backoff(fn, "a", max_retries=1, key="b")

    fn.assert_awaited_once_with("a", key="b")


# ---------------------------------------------------------------------------
# Auth failures -- never retried
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("status", [401, 403])
@patch("daily_tally.store.retry.asyncio.sleep", new_callable=AsyncMock)
async def test_auth_error_no_retry(mock_sleep, status):
    """401/403 raise StoreAuthError immediately with no retry."""
    fn = AsyncMock(side_effect=_make_http_error(status))

    with pytest.raises(StoreAuthError, match="Authentication failed"):
        await retry_with_backoff(fn, max_retries=3)

    assert fn.await_count == 1
    mock_sleep.assert_not_awaited()


@patch("daily_tally.store.retry.asyncio.sleep", new_callable=AsyncMock)
async def test_quota_403_retried_as_rate_limit(mock_sleep):
    """A 403 reporting quota exhaustion is retried like a 429."""
    quota = _make_http_error(403, text='{"error": {"message": "Quota exceeded for quota metric"}}')
    fn = AsyncMock(side_effect=[quota, "ok"])

    result = await retry_with_backoff(fn, max_retries=3, base_delay=0.01)

    assert result == "ok"
    assert fn.await_count == 2


# ---------------------------------------------------------------------------
# Other client errors
# ---------------------------------------------------------------------------

@patch("daily_tally.store.retry.asyncio.sleep", new_callable=AsyncMock)
async def test_400_raises_api_error(mock_sleep):
    """400 raises StoreAPIError carrying status and body, no retry."""
    fn = AsyncMock(side_effect=_make_http_error(400, text="bad range"))

    with pytest.raises(StoreAPIError, match="API error") as exc_info:
        await retry_with_backoff(fn, max_retries=3)

    assert exc_info.value.status_code == 400
    assert exc_info.value.response_body == "bad range"
    assert fn.await_count == 1
    mock_sleep.assert_not_awaited()


# ---------------------------------------------------------------------------
# Retry exhaustion
# ---------------------------------------------------------------------------

@patch("daily_tally.store.retry.asyncio.sleep", new_callable=AsyncMock)
async def test_max_retries_exhausted_429(mock_sleep):
    """429 exhausts retries and raises StoreUnavailableError."""
    fn = AsyncMock(side_effect=_make_http_error(429))

    with pytest.raises(StoreUnavailableError, match="HTTP 429"):
        await retry_with_backoff(fn, max_retries=2, base_delay=0.01)

    # Initial attempt + 2 retries = 3 calls
    assert fn.await_count == 3
    assert mock_sleep.await_count == 2


@patch("daily_tally.store.retry.asyncio.sleep", new_callable=AsyncMock)
async def test_max_retries_exhausted_preserves_retry_after(mock_sleep):
    """When 429 exhausts retries, retry_after is set on the exception."""
    fn = AsyncMock(side_effect=_make_http_error(429, retry_after=60))

    with pytest.raises(StoreUnavailableError) as exc_info:
        await retry_with_backoff(fn, max_retries=1, base_delay=0.01)

    assert exc_info.value.retry_after == 60.0


# ---------------------------------------------------------------------------
# Connection / timeout errors
# ---------------------------------------------------------------------------

@patch("daily_tally.store.retry.asyncio.sleep", new_callable=AsyncMock)
async def test_connection_error_retry(mock_sleep):
    """httpx.ConnectError is retried; succeeds on second attempt."""
    request = MagicMock(spec=httpx.Request)
    fn = AsyncMock(
        side_effect=[httpx.ConnectError("refused", request=request), "ok"]
    )

    result = await retry_with_backoff(fn, max_retries=3, base_delay=0.01)

    assert result == "ok"
    assert fn.await_count == 2
    assert mock_sleep.await_count == 1


@patch("daily_tally.store.retry.asyncio.sleep", new_callable=AsyncMock)
async def test_timeout_exhausted(mock_sleep):
    """Timeout exhausts retries and raises StoreUnavailableError."""
    fn = AsyncMock(side_effect=httpx.TimeoutException("timed out"))

    with pytest.raises(StoreUnavailableError, match="unreachable after"):
        await retry_with_backoff(fn, max_retries=2, base_delay=0.01)

    assert fn.await_count == 3
    assert mock_sleep.await_count == 2


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestParseRetryAfter:
    """Unit tests for _parse_retry_after helper."""

    def test_valid_integer(self):
        """Numeric Retry-After header is parsed to float."""
        response = MagicMock(spec=httpx.Response)
        response.headers = {"Retry-After": "120"}
        assert _parse_retry_after(response) == 120.0

    def test_missing_header(self):
        """Missing Retry-After returns None."""
        response = MagicMock(spec=httpx.Response)
        response.headers = {}
        assert _parse_retry_after(response) is None

    def test_invalid_value(self):
        """Non-numeric Retry-After returns None (HTTP-date not supported)."""
        response = MagicMock(spec=httpx.Response)
        response.headers = {"Retry-After": "Wed, 21 Oct 2025 07:28:00 GMT"}
        assert _parse_retry_after(response) is None


class TestComputeDelay:
    """Unit tests for _compute_delay helper."""

    def test_exponential_backoff_without_response(self):
        """Without a response, delay uses full-jitter exponential backoff."""
        delay = _compute_delay(attempt=2, base_delay=1.0, max_delay=30.0)
        assert 0 <= delay <= 4.0

    def test_delay_capped_at_max_delay(self):
        """Exponential backoff is capped at max_delay."""
        delay = _compute_delay(attempt=10, base_delay=1.0, max_delay=5.0)
        assert 0 <= delay <= 5.0

    def test_retry_after_capped_at_max_delay(self):
        """Retry-After is used but capped at max_delay."""
        response = MagicMock(spec=httpx.Response)
        response.headers = {"Retry-After": "60"}

        delay = _compute_delay(attempt=0, base_delay=1.0, max_delay=5.0, response=response)
        assert delay == 5.0


class TestIsQuotaError:
    """Unit tests for _is_quota_error helper."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("Quota exceeded for quota metric 'Read requests'", True),
            ("rateLimitExceeded", True),
            ("The caller does not have permission", False),
        ],
    )
    def test_detection(self, text, expected):
        """Quota and rate-limit wording is recognised in error bodies."""
        response = MagicMock(spec=httpx.Response)
        response.text = text
        assert _is_quota_error(response) is expected
