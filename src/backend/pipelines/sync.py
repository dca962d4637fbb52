"""Change-driven refresh coordination.

``ChangeSyncCoordinator`` owns the current filter state, the debounce timer and
the published snapshot. Change notifications are coalesced by the timer; filter
changes and manual refreshes start a cycle straight away. Every cycle carries a
sequence number, and a cycle's result is published only if no later cycle has
been started in the meantime.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Union

from common.logger import get_logger
from common.metrics_engine.calculator import calculate_dashboard
from common.metrics_engine.config import EngineConfig
from common.metrics_engine.currency import RateTable
from common.metrics_engine.filters import FilterMode, FilterState, SeriesFilter, SeriesFilters, SeriesId
from common.metrics_engine.models import Currency
from common.metrics_engine.snapshot import DashboardSnapshot

from .aggregator import RecordAggregator
from .change_feed import ChangeEvent, ChangeFeed, ChangeKind, Subscription
from .exchange_rates import ExchangeRateService
from .record_store import RecordStore

logger = get_logger(__name__)

SnapshotListener = Callable[[DashboardSnapshot], None]


class SyncState(str, Enum):
    IDLE = "idle"
    PENDING_REFRESH = "pending_refresh"
    REFRESHING = "refreshing"


class ChangeSyncCoordinator:
    def __init__(
        self,
        store: RecordStore,
        feed: ChangeFeed,
        *,
        config: Optional[EngineConfig] = None,
        filter_state: Optional[FilterState] = None,
        series_filters: Optional[SeriesFilters] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._feed = feed
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._aggregator = RecordAggregator(store, config=self._config)
        self._rate_service = ExchangeRateService(store, config=self._config, clock=self._clock)

        self._filter_state = filter_state or FilterState(display_currency=self._config.base_currency)
        self._series_filters = series_filters or SeriesFilters()
        self._snapshot = DashboardSnapshot(filter_state=self._filter_state, series_filters=self._series_filters)

        self._state = SyncState.IDLE
        self._sequence = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self._rerun = False
        self._inflight: set[asyncio.Task] = set()
        self._subscriptions: List[Subscription] = []
        self._rate_task: Optional[asyncio.Task] = None
        self._listeners: List[SnapshotListener] = []
        self._started = False
        self._closed = False

    # --- lifecycle ----------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def sequence(self) -> int:
        """Sequence number of the most recently initiated cycle."""
        return self._sequence

    @property
    def filter_state(self) -> FilterState:
        return self._filter_state

    @property
    def series_filters(self) -> SeriesFilters:
        return self._series_filters

    def start(self) -> asyncio.Task:
        """Subscribe to every watched collection, start the hourly rate timer and run the first cycle.

        Must be called from inside a running event loop.
        """
        if self._closed:
            raise RuntimeError("Coordinator is closed.")
        if self._started:
            raise RuntimeError("Coordinator already started.")
        self._started = True
        for collection in self._config.collections.watched():
            self._subscriptions.append(self._feed.subscribe(collection, self.notify))
        if self._config.rate_refresh_seconds > 0:
            self._rate_task = asyncio.get_running_loop().create_task(self._rate_refresh_loop())
        return self.refresh_now()

    def close(self) -> None:
        """Unsubscribe, cancel timers; cycles still in flight will not publish."""
        if self._closed:
            return
        self._closed = True
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()
        self._cancel_timer()
        if self._rate_task is not None:
            self._rate_task.cancel()
            self._rate_task = None
        self._rerun = False
        self._state = SyncState.IDLE

    async def wait_idle(self) -> None:
        """Wait until no timer is armed and no cycle is in flight."""
        while self._inflight or self._timer is not None:
            if self._inflight:
                await asyncio.gather(*list(self._inflight), return_exceptions=True)
            else:
                await asyncio.sleep(self._config.debounce_seconds / 4 or 0.001)

    # --- listeners ----------------------------------------------------------

    def add_listener(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # --- exposed operations -------------------------------------------------

    def get_snapshot(self) -> DashboardSnapshot:
        return self._snapshot.model_copy(update={"loading": bool(self._inflight)})

    def set_filter_mode(self, mode: Union[FilterMode, str]) -> asyncio.Task:
        mode = FilterMode(mode)
        changes: dict = {"mode": mode}
        if mode == FilterMode.ALL:
            changes["month"] = None
        elif self._filter_state.month is None:
            changes["month"] = self._clock().month - 1
        return self._apply_filter(self._filter_state.updated(**changes))

    def set_filter_period(self, month: Union[int, str, None], year: Optional[int] = None) -> asyncio.Task:
        return self._apply_filter(self._filter_state.with_period(month, year))

    def set_display_currency(self, code: Union[Currency, str]) -> asyncio.Task:
        currency = Currency(code.upper() if isinstance(code, str) else code)
        return self._apply_filter(self._filter_state.updated(display_currency=currency))

    def set_series_filter(self, series_id: Union[SeriesId, str], series_filter: SeriesFilter) -> asyncio.Task:
        self._series_filters = self._series_filters.with_filter(SeriesId(series_id), series_filter)
        return self._start_cycle()

    def refresh_now(self) -> asyncio.Task:
        return self._start_cycle()

    def notify(self, event: Optional[ChangeEvent] = None) -> None:
        """Record that a watched collection changed."""
        if self._closed:
            return
        if event is not None:
            logger.debug("Change on %s (%s).", event.collection, event.kind.value)
        if self._state == SyncState.REFRESHING:
            self._rerun = True
            return
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._config.debounce_seconds, self._on_timer)
        self._state = SyncState.PENDING_REFRESH

    # --- internals ----------------------------------------------------------

    def _apply_filter(self, filter_state: FilterState) -> asyncio.Task:
        self._filter_state = filter_state
        return self._start_cycle()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        if self._closed:
            return
        self._start_cycle()

    def _start_cycle(self) -> asyncio.Task:
        if self._closed:
            raise RuntimeError("Coordinator is closed.")
        # The new cycle re-reads every collection, so a pending debounce is redundant.
        self._cancel_timer()
        self._sequence += 1
        sequence = self._sequence
        self._state = SyncState.REFRESHING
        task = asyncio.get_running_loop().create_task(
            self._run_cycle(sequence, self._filter_state, self._series_filters)
        )
        self._inflight.add(task)
        task.add_done_callback(self._on_cycle_done)
        return task

    def _on_cycle_done(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if self._inflight or self._closed:
            return
        if self._rerun:
            self._rerun = False
            self._start_cycle()
            return
        self._state = SyncState.IDLE

    async def _run_cycle(
        self, sequence: int, filter_state: FilterState, series_filters: SeriesFilters
    ) -> Optional[DashboardSnapshot]:
        now = self._clock()
        try:
            aggregate, rate_result = await asyncio.gather(
                self._aggregator.fetch(filter_state, series_filters, now=now),
                self._rate_service.get_rates(),
            )
        except Exception as exc:
            logger.exception("Refresh cycle %s failed while fetching.", sequence)
            return self._publish_error(sequence, f"Refresh failed: {exc}", [])

        if not self._is_current(sequence):
            return None

        warnings = list(aggregate.warnings) + list(rate_result.warnings)
        if aggregate.all_failed:
            logger.error("Every required collection failed in cycle %s; keeping previous metrics.", sequence)
            return self._publish_error(
                sequence,
                "Unable to load dashboard data: "
                + ", ".join(aggregate.failed_collections),
                warnings,
                rates=rate_result.rates,
            )

        try:
            metrics = calculate_dashboard(
                aggregate.kpi_records,
                aggregate.series_records,
                rate_result.rates,
                filter_state,
                series_filters,
                now=now,
                config=self._config,
            )
        except Exception as exc:
            logger.exception("Refresh cycle %s failed while calculating.", sequence)
            return self._publish_error(sequence, f"Calculation failed: {exc}", warnings, rates=rate_result.rates)

        snapshot = DashboardSnapshot(
            kpis=metrics.kpis,
            series=metrics.series,
            loading=False,
            error=None,
            last_updated=self._clock(),
            sequence=sequence,
            warnings=warnings,
            filter_state=filter_state,
            series_filters=series_filters,
            rates=rate_result.rates,
        )
        self._publish(snapshot)
        return snapshot

    def _is_current(self, sequence: int) -> bool:
        if self._closed:
            logger.debug("Discarding cycle %s: coordinator closed.", sequence)
            return False
        if sequence != self._sequence:
            logger.debug("Discarding cycle %s: superseded by cycle %s.", sequence, self._sequence)
            return False
        return True

    def _publish_error(
        self,
        sequence: int,
        message: str,
        warnings: List[str],
        *,
        rates: Optional[RateTable] = None,
    ) -> Optional[DashboardSnapshot]:
        if not self._is_current(sequence):
            return None
        previous = self._snapshot
        snapshot = previous.model_copy(
            update={
                "loading": False,
                "error": message,
                "warnings": warnings,
                "rates": rates if rates is not None else previous.rates,
            }
        )
        self._publish(snapshot)
        return snapshot

    def _publish(self, snapshot: DashboardSnapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener %r failed.", listener)

    async def _rate_refresh_loop(self) -> None:
        event = ChangeEvent(collection=self._config.collections.exchange_rates, kind=ChangeKind.ANY)
        while not self._closed:
            await asyncio.sleep(self._config.rate_refresh_seconds)
            self.notify(event)
