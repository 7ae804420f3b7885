import logging
import os
from typing import Optional

from dotenv import load_dotenv
from supabase import Client, create_client

load_dotenv()

logger = logging.getLogger(__name__)

SUPABASE_URL = os.environ.get("SUPABASE_URL") or os.environ.get("NEXT_PUBLIC_SUPABASE_URL")
SUPABASE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")  # Service role for backend writes
SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY") or os.environ.get("NEXT_PUBLIC_SUPABASE_ANON_KEY")

_client: Optional[Client] = None


def get_supabase() -> Optional[Client]:
    """
    Get the Supabase client instance, created on first use.

    Returns None when Supabase is not configured; callers decide whether that
    is an error.
    """
    global _client

    if _client is not None:
        return _client

    if not SUPABASE_URL:
        logger.warning("SUPABASE_URL not set. Policy storage is disabled.")
        return None

    key_to_use = SUPABASE_KEY or SUPABASE_ANON_KEY
    if not key_to_use:
        logger.warning("No Supabase key found. Policy storage is disabled.")
        return None

    _client = create_client(SUPABASE_URL, key_to_use)
    return _client


def is_configured() -> bool:
    return bool(SUPABASE_URL and (SUPABASE_KEY or SUPABASE_ANON_KEY))
