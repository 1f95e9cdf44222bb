"""Fast cache exception types."""


class CacheUnavailableError(Exception):
    """The fast cache could not be reached or rejected a command."""

    pass
