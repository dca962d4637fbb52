from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from adapters.supabase.records import parse_datetime
from common.metrics_engine.filters import TimeWindow

Row = Dict[str, Any]


class RecordStoreError(RuntimeError):
    """A query against the record store failed."""


class MissingCollectionError(RecordStoreError):
    def __init__(self, collection: str):
        super().__init__(f"Collection '{collection}' does not exist in the record store.")
        self.collection = collection


class RecordStore(Protocol):
    async def select(
        self,
        collection: str,
        fields: Sequence[str],
        *,
        time_field: Optional[str] = None,
        window: Optional[TimeWindow] = None,
        equals: Optional[Mapping[str, Any]] = None,
    ) -> List[Row]:
        """Return rows of ``collection``; ``window`` applies to ``time_field`` inclusively."""
        ...


def get_record_store(name: str) -> RecordStore:
    """Resolve a record store implementation by name (fixtures|live)."""
    source = (name or "").strip().lower()
    if source in ("fixtures", ""):
        return InMemoryRecordStore.from_fixtures_dir(_default_fixtures_root())
    if source == "live":
        from .live_supabase import SupabaseRecordStore

        return SupabaseRecordStore()
    raise ValueError(f"Unknown record store '{name}' (expected 'fixtures' or 'live').")


class InMemoryRecordStore:
    """Rows held in memory, keyed by collection; a collection that was never set is missing."""

    def __init__(self, collections: Optional[Mapping[str, Iterable[Row]]] = None) -> None:
        self._collections: Dict[str, List[Row]] = {
            name: [dict(row) for row in rows] for name, rows in (collections or {}).items()
        }
        self._failing: Dict[str, Exception] = {}
        self.queries: List[tuple[str, Optional[TimeWindow]]] = []

    @classmethod
    def from_fixtures_dir(cls, root: Path) -> "InMemoryRecordStore":
        """Load ``<collection>.json`` files (each a JSON array of rows) from ``root``."""
        collections: Dict[str, List[Row]] = {}
        for path in sorted(root.glob("*.json")):
            raw = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(raw, list):
                raise ValueError(f"Fixture {path} must be a JSON array of rows.")
            collections[path.stem] = [row for row in raw if isinstance(row, dict)]
        return cls(collections)

    def set_rows(self, collection: str, rows: Iterable[Row]) -> None:
        self._collections[collection] = [dict(row) for row in rows]

    def drop(self, collection: str) -> None:
        self._collections.pop(collection, None)

    def fail(self, collection: str, error: Optional[Exception] = None) -> None:
        """Make every query against ``collection`` raise ``error``."""
        self._failing[collection] = error or RecordStoreError(f"Simulated failure for {collection}.")

    def heal(self, collection: str) -> None:
        self._failing.pop(collection, None)

    async def select(
        self,
        collection: str,
        fields: Sequence[str],
        *,
        time_field: Optional[str] = None,
        window: Optional[TimeWindow] = None,
        equals: Optional[Mapping[str, Any]] = None,
    ) -> List[Row]:
        self.queries.append((collection, window))
        if collection in self._failing:
            raise self._failing[collection]
        if collection not in self._collections:
            raise MissingCollectionError(collection)

        rows: List[Row] = []
        for row in self._collections[collection]:
            if time_field and window is not None and not window.contains(parse_datetime(row.get(time_field))):
                continue
            if equals and not _matches_equals(row, equals):
                continue
            rows.append(_project(row, fields))
        return rows


def _matches_equals(row: Mapping[str, Any], equals: Mapping[str, Any]) -> bool:
    for column, expected in equals.items():
        actual = row.get(column)
        # An absent flag column behaves like the column default (false/null).
        if actual is None and expected is False:
            continue
        if actual != expected:
            return False
    return True


def _project(row: Mapping[str, Any], fields: Sequence[str]) -> Row:
    if not fields or "*" in fields:
        return dict(row)
    projected: Row = {}
    for name in fields:
        # Embedded resources look like "drivers(full_name)".
        key = name.split("(", 1)[0].strip()
        if key in row:
            projected[key] = row[key]
    return projected


def _default_fixtures_root() -> Path:
    return Path(__file__).resolve().parents[1] / "tests" / "fixtures" / "records"
