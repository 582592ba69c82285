"""
Supabase client - created on first table access, so importing the
package never opens a connection.
"""
import logging
from typing import Optional

from supabase import create_client, Client

from .config import settings

logger = logging.getLogger(__name__)

_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """Return the process-wide client, creating it from settings on first call"""
    global _client

    if _client is None:
        if not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
            raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be configured")
        logger.info(f"Creating Supabase client for {settings.SUPABASE_URL}")
        _client = create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)

    return _client


class LazySupabase:
    """Stand-in for the client that resolves it on each table() call"""

    def table(self, name: str):
        return get_supabase_client().table(name)


supabase = LazySupabase()
