from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


load_dotenv()


@dataclass(frozen=True)
class SupabaseConfig:
    url: str
    anon_key: str
    schema: str = "public"
    timeout_seconds: float = 30.0

    @property
    def rest_url(self) -> str:
        return f"{self.url.rstrip('/')}/rest/v1"


def get_supabase_config() -> SupabaseConfig:
    """
    Load Supabase connector configuration from environment variables.

    Reads SUPABASE_URL and SUPABASE_ANON_KEY (required), plus optional
    SUPABASE_SCHEMA and SUPABASE_TIMEOUT_SECONDS.
    """
    schema = os.getenv("SUPABASE_SCHEMA", "").strip() or "public"
    return SupabaseConfig(
        url=_require_env("SUPABASE_URL"),
        anon_key=_require_env("SUPABASE_ANON_KEY"),
        schema=schema,
        timeout_seconds=_float_env("SUPABASE_TIMEOUT_SECONDS", 30.0),
    )


def _require_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ValueError(f"Missing required environment variable: {name}")
    return value


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}.") from exc
    if value <= 0:
        raise ValueError(f"{name} must be > 0.")
    return value
