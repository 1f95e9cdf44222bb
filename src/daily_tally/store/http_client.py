"""Shared HTTP client with connection pooling for backing store requests."""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

_http_client: Optional[httpx.AsyncClient] = None


def get_http_client(timeout: float = 15.0) -> httpx.AsyncClient:
    """Get or create the process-wide HTTP client."""
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
        )
        logger.debug("Created shared HTTP client (timeout=%.1fs)", timeout)
    return _http_client


async def close_http_client() -> None:
    """Close the shared HTTP client and release its connections."""
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None
