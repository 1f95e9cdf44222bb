"""Submission errors and failure classification."""

from typing import Optional

from ..cache.exceptions import CacheUnavailableError
from ..store.exceptions import StoreAuthError, StoreUnavailableError

SETUP_REQUIRED = "Setup Required"
OVERLOADED = "Overloaded"

_CREDENTIAL_HINTS = ("credential", "private key", "authentication", "unauthenticated", "invalid_grant", "permission")
_CAPACITY_HINTS = ("quota", "rate limit", "429", "too many requests", "unavailable", "timeout", "overloaded")


class SubmissionError(Exception):
    """A submission rejected before anything was written."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidInputError(SubmissionError):
    """Missing name, or a count that is not an integer."""

    pass


class AmountTooLargeError(SubmissionError):
    """A single submission exceeds the per-submission ceiling."""

    def __init__(self, message: str, max_amount: int):
        self.max_amount = max_amount
        super().__init__(message)


class NoCreditError(SubmissionError):
    """A correction for a name with nothing recorded today."""

    def __init__(self, message: str, name: str):
        self.name = name
        super().__init__(message)


def classify_failure(exc: BaseException) -> Optional[str]:
    """Map a failure to the in-band read error: Setup Required or Overloaded.

    Known exception types decide first; anything else is judged by its message.
    Returns None when the failure fits neither kind.
    """
    if isinstance(exc, StoreAuthError):
        return SETUP_REQUIRED
    if isinstance(exc, (StoreUnavailableError, CacheUnavailableError)):
        return OVERLOADED

    message = str(exc).lower()
    if any(hint in message for hint in _CREDENTIAL_HINTS):
        return SETUP_REQUIRED
    if any(hint in message for hint in _CAPACITY_HINTS):
        return OVERLOADED
    return None
