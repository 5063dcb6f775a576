"""
HTTP client singleton with connection pooling.

Every external channel call and health probe goes through here:
- connection reuse across dispatches
- configurable pool limits
- HTTP/2 multiplexing
- graceful close on shutdown
"""

import httpx
import logging
from typing import Optional

logger = logging.getLogger(__name__)

_client: Optional[httpx.AsyncClient] = None


async def get_http_client() -> httpx.AsyncClient:
    """
    Return the shared HTTP client, creating it on first use.

    Returns:
        httpx.AsyncClient configured with pooling
    """
    global _client
    if _client is None:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=10.0,
                read=30.0,
                write=30.0,
                pool=5.0,
            ),
            limits=httpx.Limits(
                max_connections=100,
                max_keepalive_connections=20,
                keepalive_expiry=30.0,
            ),
            http2=True,
            headers={
                "User-Agent": "Outreach-Engine/1.0",
            },
            follow_redirects=True,
        )
        logger.info("HTTP client singleton created")

    return _client


async def close_http_client() -> None:
    """
    Close the shared HTTP client.

    Called by the worker on shutdown.
    """
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
        logger.info("HTTP client singleton closed")
