"""Supabase client initialization."""

from functools import lru_cache

from supabase import Client, create_client

from storyloom.core.config import get_settings


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """
    Get the Supabase client for book content and the chunk table (cached).

    Returns:
        Supabase client authenticated with the service role key

    Raises:
        RuntimeError: If Supabase is not configured or the client cannot be created
    """
    settings = get_settings()
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
        raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

    try:
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    except Exception as e:
        raise RuntimeError(f"Failed to initialize Supabase client: {e}") from e
