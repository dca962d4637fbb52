"""Supabase (PostgREST) connector: network + config live here; row coercion lives in src/backend/adapters/supabase."""

from .client import CollectionNotFoundError, SupabaseHttpError
from .config import SupabaseConfig, get_supabase_config
from .queries import select_rows

__all__ = [
    "CollectionNotFoundError",
    "SupabaseConfig",
    "SupabaseHttpError",
    "get_supabase_config",
    "select_rows",
]
