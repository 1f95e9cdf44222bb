"""Backing store exception types.

Callers triage on the two kinds that matter: StoreAuthError means the
deployment is not set up (credentials missing or rejected) and is never
retried; StoreUnavailableError means the store is overloaded or unreachable
and is eligible for retry or fallback.
"""

from typing import Optional


class StoreError(Exception):
    """Base exception for all backing store errors."""

    pass


class StoreAuthError(StoreError):
    """Missing, malformed or rejected credentials (401/403, token refresh failure)."""

    pass


class StoreUnavailableError(StoreError):
    """Rate limited (429), server-side failure or unreachable store."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message)


class StoreAPIError(StoreError):
    """Store returned a non-retryable error response."""

    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)
