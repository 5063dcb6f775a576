"""
Supabase client for the persistence adapters.

The client is created lazily so importing the engine never requires
database credentials (tests, dry runs).
"""
import asyncio
import logging
from functools import lru_cache
from typing import Any, Callable

from supabase import create_client, Client

from outreach.core.config import settings
from outreach.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@lru_cache()
def get_supabase_client() -> Client:
    """
    Return the cached Supabase client.
    Uses the service key for full access.
    """
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_KEY:
        raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required")

    return create_client(
        settings.SUPABASE_URL,
        settings.SUPABASE_SERVICE_KEY
    )


async def run_query(func: Callable[[], Any]) -> Any:
    """
    Run a synchronous supabase-py query without blocking the event loop.

    Args:
        func: Zero-argument callable building and executing the query

    Returns:
        The query response
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func)
