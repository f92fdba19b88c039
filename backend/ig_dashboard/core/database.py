"""
Supabase configuration and client management.

The dashboard backend talks to its cache tables through Supabase's official SDK
(PostgREST), never through a direct PostgreSQL connection.
"""

from __future__ import annotations

import logging
import os
from typing import Generator, Optional

from supabase import Client, create_client

logger = logging.getLogger(__name__)

_supabase_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """Create (once) and return a Supabase client (service role)."""
    global _supabase_client
    if _supabase_client is None:
        url = os.getenv("SUPABASE_URL")
        service_role_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        if not url or not service_role_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for backend runtime.")
        _supabase_client = create_client(url, service_role_key)
        logger.info("Supabase client initialized")
    return _supabase_client


def get_db() -> Generator[Client, None, None]:
    """Supabase client dependency for FastAPI's Depends."""
    yield get_supabase_client()


def get_db_sync() -> Client:
    """Supabase client for scripts / background tasks."""
    return get_supabase_client()


def check_connection() -> bool:
    """Check Supabase connectivity against the connected accounts table."""
    try:
        client = get_supabase_client()
        client.table("connected_accounts").select("id").limit(1).execute()
        logger.info("Supabase connection test successful")
        return True
    except Exception as e:
        logger.error(f"Supabase connection test failed: {e}")
        return False
