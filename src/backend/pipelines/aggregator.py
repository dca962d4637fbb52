"""Concurrent record fetching under the global and per-series filters."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from adapters.supabase.records import (
    booking_from_row,
    name_lookup_from_rows,
    requisition_from_row,
    tour_booking_from_row,
    transaction_from_row,
    vehicle_from_row,
)
from common.logger import get_logger
from common.metrics_engine.config import EngineConfig
from common.metrics_engine.filters import FilterState, SeriesFilters, TimeWindow
from common.metrics_engine.models import DashboardRecords

from .record_store import MissingCollectionError, RecordStore, RecordStoreError, Row

logger = get_logger(__name__)

BOOKING_FIELDS = (
    "id",
    "booking_reference",
    "start_date",
    "end_date",
    "status",
    "amount_paid",
    "total_amount",
    "currency",
    "assigned_vehicle_id",
    "assigned_to",
    "client_id",
    "client_name",
    "created_at",
)
VEHICLE_FIELDS = (
    "id",
    "license_plate",
    "make",
    "model",
    "capacity",
    "status",
    "current_driver_id",
    "drivers(full_name)",
)
TRANSACTION_FIELDS = (
    "id",
    "transaction_date",
    "amount",
    "transaction_type",
    "category",
    "currency",
    "description",
    "reference_number",
    "status",
)
REQUISITION_FIELDS = (
    "id",
    "cr_number",
    "total_cost",
    "currency",
    "status",
    "expense_category",
    "date_completed",
    "created_at",
    "amount_usd",
)
TOUR_BOOKING_FIELDS = (
    "id",
    "start_date",
    "end_date",
    "total_price_usd",
    "total_price_ugx",
    "total_expenses_usd",
    "total_expenses_ugx",
    "vehicle_hire_cost_usd",
    "vehicle_hire_cost_ugx",
)


@dataclass(frozen=True)
class CollectionQuery:
    key: str
    collection: str
    fields: Tuple[str, ...]
    time_field: Optional[str] = None
    equals: Mapping[str, Any] = field(default_factory=dict)
    required: bool = True


@dataclass(frozen=True)
class _FetchOutcome:
    query: CollectionQuery
    rows: List[Row]
    warning: Optional[str] = None
    failed: bool = False


@dataclass(frozen=True)
class AggregateResult:
    kpi_records: DashboardRecords
    series_records: DashboardRecords
    warnings: Tuple[str, ...] = ()
    failed_collections: Tuple[str, ...] = ()
    all_failed: bool = False


def collection_queries(config: EngineConfig) -> Dict[str, CollectionQuery]:
    names = config.collections
    return {
        "bookings": CollectionQuery("bookings", names.bookings, BOOKING_FIELDS, "start_date"),
        "transactions": CollectionQuery(
            "transactions", names.transactions, TRANSACTION_FIELDS, "transaction_date"
        ),
        "requisitions": CollectionQuery(
            "requisitions",
            names.requisitions,
            REQUISITION_FIELDS,
            "created_at",
            equals={"soft_deleted": False},
        ),
        "tour_bookings": CollectionQuery(
            "tour_bookings", names.tour_bookings, TOUR_BOOKING_FIELDS, "start_date", required=False
        ),
        "vehicles": CollectionQuery("vehicles", names.vehicles, VEHICLE_FIELDS),
        "clients": CollectionQuery("clients", names.clients, ("id", "company_name"), required=False),
        "profiles": CollectionQuery("profiles", names.profiles, ("id", "full_name"), required=False),
    }


TIMED_KEYS = ("bookings", "transactions", "requisitions", "tour_bookings")
UNTIMED_KEYS = ("vehicles", "clients", "profiles")

_COERCERS: Dict[str, Callable[[Mapping[str, Any]], Any]] = {
    "bookings": booking_from_row,
    "transactions": transaction_from_row,
    "requisitions": requisition_from_row,
    "tour_bookings": tour_booking_from_row,
    "vehicles": vehicle_from_row,
}


class RecordAggregator:
    def __init__(self, store: RecordStore, *, config: Optional[EngineConfig] = None) -> None:
        self._store = store
        self._config = config or EngineConfig()
        self._queries = collection_queries(self._config)

    async def fetch(
        self,
        filter_state: FilterState,
        series_filters: SeriesFilters,
        *,
        now: datetime,
    ) -> AggregateResult:
        """
        Fetch every collection concurrently.

        KPI records follow the global filter. When that filter is a period, the
        time-filtered collections are fetched a second time under the union of the
        series windows so series never depend on the global selection.
        """
        kpi_window = filter_state.window()
        jobs: List[Tuple[str, Optional[TimeWindow]]] = [(key, kpi_window) for key in TIMED_KEYS]
        jobs.extend((key, None) for key in UNTIMED_KEYS)

        separate_series = kpi_window is not None
        series_window = series_filters.union_window(now) if separate_series else None
        if separate_series:
            jobs.extend((key, series_window) for key in TIMED_KEYS)

        outcomes = await asyncio.gather(*(self._fetch(self._queries[key], window) for key, window in jobs))

        kpi_outcomes = {outcome.query.key: outcome for outcome in outcomes[: len(TIMED_KEYS) + len(UNTIMED_KEYS)]}
        series_outcomes = dict(kpi_outcomes)
        if separate_series:
            for outcome in outcomes[len(TIMED_KEYS) + len(UNTIMED_KEYS):]:
                series_outcomes[outcome.query.key] = outcome

        warnings: List[str] = []
        failed: List[str] = []
        for outcome in outcomes:
            if outcome.warning and outcome.warning not in warnings:
                warnings.append(outcome.warning)
            if outcome.failed and outcome.query.collection not in failed:
                failed.append(outcome.query.collection)

        required = [o for o in kpi_outcomes.values() if o.query.required]
        all_failed = bool(required) and all(o.failed for o in required)

        return AggregateResult(
            kpi_records=self._records_from(kpi_outcomes),
            series_records=self._records_from(series_outcomes),
            warnings=tuple(warnings),
            failed_collections=tuple(failed),
            all_failed=all_failed,
        )

    async def _fetch(self, query: CollectionQuery, window: Optional[TimeWindow]) -> _FetchOutcome:
        try:
            rows = await self._store.select(
                query.collection,
                query.fields,
                time_field=query.time_field if window is not None else None,
                window=window,
                equals=query.equals or None,
            )
        except MissingCollectionError:
            if not query.required:
                logger.debug("Optional collection %s is not provisioned; treating as empty.", query.collection)
                return _FetchOutcome(query=query, rows=[])
            logger.warning("Collection %s does not exist; treating as empty.", query.collection)
            return _FetchOutcome(
                query=query, rows=[], warning=f"Collection '{query.collection}' not found.", failed=True
            )
        except RecordStoreError as exc:
            logger.warning("Fetching %s failed: %s", query.collection, exc)
            return _FetchOutcome(
                query=query, rows=[], warning=f"Fetching '{query.collection}' failed: {exc}", failed=True
            )
        except Exception as exc:
            # Anything else from a store (timeouts, decode errors) still only empties this collection.
            logger.warning("Fetching %s failed unexpectedly: %r", query.collection, exc, exc_info=True)
            reason = str(exc) or type(exc).__name__
            return _FetchOutcome(
                query=query, rows=[], warning=f"Fetching '{query.collection}' failed: {reason}", failed=True
            )
        return _FetchOutcome(query=query, rows=rows)

    def _records_from(self, outcomes: Mapping[str, _FetchOutcome]) -> DashboardRecords:
        def coerce(key: str) -> tuple:
            outcome = outcomes.get(key)
            if outcome is None:
                return ()
            return tuple(_COERCERS[key](row) for row in outcome.rows)

        clients = outcomes.get("clients")
        profiles = outcomes.get("profiles")
        return DashboardRecords(
            bookings=coerce("bookings"),
            vehicles=coerce("vehicles"),
            transactions=coerce("transactions"),
            requisitions=coerce("requisitions"),
            tour_bookings=coerce("tour_bookings"),
            client_names=name_lookup_from_rows(clients.rows, name_field="company_name") if clients else {},
            profile_names=name_lookup_from_rows(profiles.rows, name_field="full_name") if profiles else {},
        )
