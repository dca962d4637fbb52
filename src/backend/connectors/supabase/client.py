from __future__ import annotations

import http.client
import json
import time
from typing import Any, Sequence
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from common.logger import get_logger

from .config import SupabaseConfig

logger = get_logger(__name__)

# PostgREST / Postgres codes for a relation that does not exist.
MISSING_RELATION_CODES = ("PGRST205", "42P01")
RETRYABLE_STATUSES = (429, 500, 502, 503, 504)

QueryParams = Sequence[tuple[str, str]]


class SupabaseHttpError(RuntimeError):
    def __init__(self, status: int, message: str, body: str | None = None):
        super().__init__(f"Supabase HTTP {status}: {message}")
        self.status = status
        self.body = body


class CollectionNotFoundError(SupabaseHttpError):
    def __init__(self, collection: str, status: int, body: str | None = None):
        super().__init__(status, f"collection '{collection}' not found", body)
        self.collection = collection


def supabase_get(
    config: SupabaseConfig,
    collection: str,
    *,
    params: QueryParams | None = None,
    max_retries: int = 3,
) -> list[dict[str, Any]]:
    """
    GET rows from a PostgREST collection.

    Uses stdlib urllib with retry + exponential backoff on transient failures.
    """
    retries = 0
    backoff = 0.5

    while True:
        url = _build_url(config, collection, params)
        req = Request(url, method="GET")
        req.add_header("Accept", "application/json")
        req.add_header("apikey", config.anon_key)
        req.add_header("Authorization", f"Bearer {config.anon_key}")
        req.add_header("Accept-Profile", config.schema)

        try:
            with urlopen(req, timeout=config.timeout_seconds) as resp:
                raw = resp.read().decode("utf-8")
                payload = json.loads(raw or "[]")
                if not isinstance(payload, list):
                    raise SupabaseHttpError(resp.status, "expected a JSON array of rows", raw)
                return [row for row in payload if isinstance(row, dict)]
        except HTTPError as exc:
            body = exc.read().decode("utf-8") if exc.fp else None
            status = exc.code

            if _is_missing_relation(status, body):
                raise CollectionNotFoundError(collection, status, body) from exc

            if status in RETRYABLE_STATUSES and retries < max_retries:
                logger.debug("Retrying %s after HTTP %s (attempt %s).", collection, status, retries + 1)
                time.sleep(backoff)
                retries += 1
                backoff *= 2
                continue

            raise SupabaseHttpError(status, exc.reason, body) from exc
        except (URLError, OSError, http.client.HTTPException) as exc:
            # Covers connection resets, read timeouts and truncated bodies.
            if retries < max_retries:
                logger.debug("Retrying %s after %s (attempt %s).", collection, exc, retries + 1)
                time.sleep(backoff)
                retries += 1
                backoff *= 2
                continue
            raise SupabaseHttpError(0, str(exc) or type(exc).__name__) from exc
        except ValueError as exc:
            raise SupabaseHttpError(0, f"undecodable response body: {exc}") from exc


def supabase_select_all(
    config: SupabaseConfig,
    collection: str,
    *,
    params: QueryParams | None = None,
    page_size: int = 1000,
) -> list[dict[str, Any]]:
    """
    Select every matching row, paging with limit/offset.
    """
    if page_size <= 0:
        raise ValueError("page_size must be > 0")

    offset = 0
    rows: list[dict[str, Any]] = []
    while True:
        page_params = list(params or []) + [("limit", str(page_size)), ("offset", str(offset))]
        page = supabase_get(config, collection, params=page_params)
        rows.extend(page)
        if len(page) < page_size:
            break
        offset += page_size
    return rows


def _is_missing_relation(status: int, body: str | None) -> bool:
    if status == 404:
        return True
    if not body:
        return False
    try:
        payload = json.loads(body)
    except ValueError:
        return False
    return isinstance(payload, dict) and payload.get("code") in MISSING_RELATION_CODES


def _build_url(config: SupabaseConfig, collection: str, params: QueryParams | None) -> str:
    url = f"{config.rest_url}/{quote(collection)}"
    if params:
        url = f"{url}?{urlencode(list(params))}"
    return url
