"""
Shared HTTP client with connection pooling.

Telegram calls, page fetches and Firecrawl scrapes all go through one pooled
AsyncClient so connections are reused across batches.

Usage:
    from spamguard.services.http_client import get_http_client, close_http_client

    client = get_http_client()
    response = await client.get("https://example.com")

    # At application shutdown
    await close_http_client()
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; spamguard/0.1; +https://core.telegram.org/bots)"

_client: Optional[httpx.AsyncClient] = None

DEFAULT_LIMITS = httpx.Limits(
    max_keepalive_connections=20,
    max_connections=50,
    keepalive_expiry=30.0,
)

# Read timeout must outlast Telegram long polling (getUpdates timeout + slack).
DEFAULT_TIMEOUT = httpx.Timeout(connect=10.0, read=60.0, write=15.0, pool=5.0)


def get_http_client(
    *,
    limits: Optional[httpx.Limits] = None,
    timeout: Optional[httpx.Timeout] = None,
) -> httpx.AsyncClient:
    """
    Get the shared HTTP client, creating it on first use.

    Args:
        limits: Connection limits (only used on first call)
        timeout: Default timeouts (only used on first call); callers pass per-request timeouts

    Returns:
        The shared AsyncClient instance
    """
    global _client

    if _client is None:
        _client = httpx.AsyncClient(
            limits=limits or DEFAULT_LIMITS,
            timeout=timeout or DEFAULT_TIMEOUT,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
        logger.debug("Initialized shared HTTP client")

    return _client


async def close_http_client() -> None:
    """
    Close the shared client. The next `get_http_client()` call creates a new one.
    """
    global _client

    if _client is not None:
        await _client.aclose()
        _client = None
        logger.debug("Closed shared HTTP client")
