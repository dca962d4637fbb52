from __future__ import annotations

import asyncio
from typing import Any, List, Mapping, Optional, Sequence

from common.logger import get_logger
from common.metrics_engine.filters import TimeWindow
from connectors.supabase.client import CollectionNotFoundError, SupabaseHttpError
from connectors.supabase.config import SupabaseConfig, get_supabase_config
from connectors.supabase.queries import select_rows

from .record_store import MissingCollectionError, RecordStoreError, Row

logger = get_logger(__name__)


class SupabaseRecordStore:
    """RecordStore backed by the Supabase REST API.

    The connector is blocking (urllib), so each query runs in a worker thread
    and the event loop stays free while it is in flight.
    """

    def __init__(self, config: SupabaseConfig | None = None) -> None:
        self._config = config or get_supabase_config()

    async def select(
        self,
        collection: str,
        fields: Sequence[str],
        *,
        time_field: Optional[str] = None,
        window: Optional[TimeWindow] = None,
        equals: Optional[Mapping[str, Any]] = None,
    ) -> List[Row]:
        try:
            return await asyncio.to_thread(
                select_rows,
                self._config,
                collection,
                fields,
                time_field=time_field if window is not None else None,
                start=window.start if window is not None else None,
                end=window.end if window is not None else None,
                equals=equals,
            )
        except CollectionNotFoundError as exc:
            raise MissingCollectionError(collection) from exc
        except SupabaseHttpError as exc:
            logger.debug("Supabase query for %s failed: %s", collection, exc)
            raise RecordStoreError(str(exc)) from exc
