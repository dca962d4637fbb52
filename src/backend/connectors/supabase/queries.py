from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Sequence

from .client import QueryParams, supabase_select_all
from .config import SupabaseConfig

# Offset paging needs a total order or rows can repeat or vanish across pages.
DEFAULT_ORDER = "id.asc"


def select_rows(
    config: SupabaseConfig,
    collection: str,
    fields: Sequence[str],
    *,
    time_field: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    equals: Mapping[str, Any] | None = None,
    order: str | None = DEFAULT_ORDER,
) -> list[dict[str, Any]]:
    """
    Select ``fields`` from ``collection``, optionally within an inclusive time range
    and with simple equality filters. Rows come back in ``order`` (PostgREST syntax).
    """
    return supabase_select_all(
        config,
        collection,
        params=build_query_params(fields, time_field=time_field, start=start, end=end, equals=equals, order=order),
    )


def build_query_params(
    fields: Sequence[str],
    *,
    time_field: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    equals: Mapping[str, Any] | None = None,
    order: str | None = DEFAULT_ORDER,
) -> QueryParams:
    params: list[tuple[str, str]] = [("select", ",".join(fields) if fields else "*")]
    if time_field:
        if start is not None:
            params.append((time_field, f"gte.{start.isoformat()}"))
        if end is not None:
            params.append((time_field, f"lte.{end.isoformat()}"))
    for column, value in (equals or {}).items():
        params.append((column, f"eq.{_format_value(value)}"))
    if order:
        params.append(("order", order))
    return params


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)
