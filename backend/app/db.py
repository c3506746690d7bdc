"""
Database client configuration.
Uses Supabase for PostgreSQL (case rows, logs, alerts) and Realtime (the
case change feed).

The client is created on first use so that importing app modules does not
require credentials (tests inject their own store).
"""

import os
from typing import Optional

from dotenv import load_dotenv
from supabase import AsyncClient, acreate_client

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY")

_admin_client: Optional[AsyncClient] = None


async def get_supabase_admin() -> AsyncClient:
    """
    Return the shared service-role client (bypasses RLS).

    Falls back to SUPABASE_KEY when no service key is configured.

    Raises:
        ValueError: if SUPABASE_URL or a key is not set
    """
    global _admin_client
    if _admin_client is None:
        key = SUPABASE_SERVICE_KEY or SUPABASE_KEY
        if not SUPABASE_URL or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment variables")
        _admin_client = await acreate_client(SUPABASE_URL, key)
    return _admin_client
