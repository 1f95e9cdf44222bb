"""Tests for read failure classification."""

import pytest

from daily_tally.cache.exceptions import CacheUnavailableError
from daily_tally.services.exceptions import OVERLOADED, SETUP_REQUIRED, classify_failure
from daily_tally.store.exceptions import StoreAPIError, StoreAuthError, StoreUnavailableError


class TestClassifyFailure:
    """Test classify_failure."""

    def test_auth_error_is_setup_required(self):
        """Test rejected credentials mean the deployment is not set up."""
        assert classify_failure(StoreAuthError("Google Sheets credentials are not set")) == SETUP_REQUIRED

    @pytest.mark.parametrize(
        "exc",
        [StoreUnavailableError("rate limited", retry_after=30), CacheUnavailableError("connection refused")],
    )
    def test_unavailable_is_overloaded(self, exc):
        """Test unreachable tiers are reported as overloaded."""
        assert classify_failure(exc) == OVERLOADED

    @pytest.mark.parametrize(
        "message, expected",
        [
            ("invalid_grant: account not found", SETUP_REQUIRED),
            ("Caller does not have permission", SETUP_REQUIRED),
            ("Quota exceeded for quota metric 'Read requests'", OVERLOADED),
            ("upstream request timeout", OVERLOADED),
        ],
    )
    def test_classified_by_message(self, message, expected):
        """Test untyped failures are judged by their message."""
        assert classify_failure(RuntimeError(message)) == expected

    def test_unknown_failure(self):
        """Test failures that fit neither kind return None."""
        assert classify_failure(StoreAPIError("Bad request", status_code=400)) is None
        assert classify_failure(KeyError("total")) is None
