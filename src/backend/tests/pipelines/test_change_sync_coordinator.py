import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from common.metrics_engine.categories import VehicleCapacity
from common.metrics_engine.config import EngineConfig
from common.metrics_engine.filters import (
    CapacityFilter,
    FilterMode,
    FilterState,
    SeriesFilter,
    SeriesFilters,
    SeriesId,
    SeriesPeriod,
)
from common.metrics_engine.models import Currency
from pipelines.change_feed import ChangeEvent, LocalChangeFeed
from pipelines.record_store import InMemoryRecordStore
from pipelines.sync import ChangeSyncCoordinator, SyncState


NOW = datetime(2025, 6, 15, 12, tzinfo=timezone.utc)
CONFIG = EngineConfig(debounce_seconds=0.05, rate_refresh_seconds=0)
JUNE = FilterState(mode=FilterMode.PERIOD, month=5, year=2025)
SERIES_2025 = SeriesFilters(
    revenue_expenses=SeriesFilter(period=SeriesPeriod.YEAR, year=2025),
    expense_categories=SeriesFilter(period=SeriesPeriod.YEAR, year=2025),
    top_vehicles=SeriesFilter(period=SeriesPeriod.MONTH, year=2025),
    capacity_comparison=SeriesFilter(period=SeriesPeriod.ALL, year=2025),
)
REQUIRED = ("bookings", "vehicles", "financial_transactions", "cash_requisitions")


class _DelayedStore(InMemoryRecordStore):
    """Sleeps before answering; the delay is keyed by the first month of the query window."""

    def __init__(self, collections, *, delays=None, default=0.0):
        super().__init__(collections)
        self._delays = delays or {}
        self._default = default

    async def select(self, collection, fields, *, time_field=None, window=None, equals=None):
        key = window.start.month if window is not None else None
        await asyncio.sleep(self._delays.get(key, self._default))
        return await super().select(collection, fields, time_field=time_field, window=window, equals=equals)


def _coordinator(store, feed=None, *, config=CONFIG, filter_state=JUNE):
    return ChangeSyncCoordinator(
        store,
        feed or LocalChangeFeed(),
        config=config,
        filter_state=filter_state,
        series_filters=SERIES_2025,
        clock=lambda: NOW,
    )


def test_start_publishes_first_snapshot(make_store):
    async def scenario():
        coordinator = _coordinator(make_store())
        await coordinator.start()
        snapshot = coordinator.get_snapshot()
        state = coordinator.state
        coordinator.close()
        return snapshot, state

    snapshot, state = asyncio.run(scenario())

    assert state == SyncState.IDLE
    assert snapshot.sequence == 1
    assert snapshot.loading is False
    assert snapshot.error is None
    assert snapshot.last_updated == NOW
    kpis = snapshot.kpis
    assert kpis.booking_revenue == Decimal("3680.00")
    assert kpis.tour_profit == Decimal("100.00")
    assert kpis.transaction_revenue == Decimal("250.00")
    assert kpis.total_revenue == Decimal("4030.00")
    assert kpis.total_expenses == Decimal("375.00")
    assert kpis.fleet_utilization == Decimal("40.00")
    assert kpis.outstanding_payments_count == 2
    assert kpis.active_bookings == 3
    # KES has no stored rate in the fixtures.
    assert snapshot.degraded
    assert any("KES" in warning for warning in snapshot.warnings)


def test_period_filter_change_recomputes(make_store):
    async def scenario():
        coordinator = _coordinator(make_store())
        await coordinator.start()
        await coordinator.set_filter_period(4, 2025)
        snapshot = coordinator.get_snapshot()
        coordinator.close()
        return snapshot

    snapshot = asyncio.run(scenario())

    assert snapshot.sequence == 2
    assert snapshot.filter_state.month == 4
    assert snapshot.kpis.total_revenue == Decimal("0.00")
    assert snapshot.kpis.outstanding_payments_total == Decimal("500.00")
    # Series keep their own filters.
    assert snapshot.series.monthly_revenue_expenses[5].revenue == Decimal("4030.00")


def test_filter_mode_period_defaults_to_current_month(make_store):
    async def scenario():
        coordinator = _coordinator(make_store(), filter_state=FilterState(year=2025))
        await coordinator.set_filter_mode("period")
        snapshot = coordinator.get_snapshot()
        coordinator.close()
        return snapshot

    snapshot = asyncio.run(scenario())
    assert snapshot.filter_state.mode == FilterMode.PERIOD
    assert snapshot.filter_state.month == 5


def test_notifications_within_debounce_window_coalesce(make_store):
    async def scenario():
        feed = LocalChangeFeed()
        coordinator = _coordinator(make_store(), feed)
        await coordinator.start()
        for _ in range(5):
            feed.publish(ChangeEvent(collection="bookings"))
            await asyncio.sleep(0.01)
        pending = coordinator.state
        await asyncio.sleep(0.15)
        await coordinator.wait_idle()
        sequence = coordinator.sequence
        coordinator.close()
        return pending, sequence

    pending, sequence = asyncio.run(scenario())
    assert pending == SyncState.PENDING_REFRESH
    assert sequence == 2


def test_changes_during_refresh_trigger_exactly_one_rerun(fixture_rows):
    async def scenario():
        feed = LocalChangeFeed()
        coordinator = _coordinator(_DelayedStore(fixture_rows, default=0.05), feed)
        coordinator.start()
        loading = coordinator.get_snapshot().loading
        for collection in ("bookings", "vehicles", "exchange_rates"):
            feed.publish(ChangeEvent(collection=collection))
        assert coordinator.state == SyncState.REFRESHING
        await coordinator.wait_idle()
        result = coordinator.sequence, coordinator.get_snapshot().sequence, coordinator.state
        coordinator.close()
        return loading, result

    loading, (sequence, published, state) = asyncio.run(scenario())
    assert loading is True
    assert sequence == 2
    assert published == 2
    assert state == SyncState.IDLE


def test_only_latest_cycle_is_published(fixture_rows):
    # February queries are slow, so cycle 2 finishes after cycle 3.
    store = _DelayedStore(fixture_rows, delays={2: 0.2})

    async def scenario():
        coordinator = _coordinator(store, filter_state=FilterState(year=2025))
        published = []
        coordinator.add_listener(lambda snapshot: published.append(snapshot.sequence))
        coordinator.refresh_now()
        coordinator.set_filter_period(1, 2025)
        latest = coordinator.set_filter_period(2, 2025)
        await latest
        await coordinator.wait_idle()
        snapshot = coordinator.get_snapshot()
        coordinator.close()
        return published, snapshot

    published, snapshot = asyncio.run(scenario())
    assert published == [3]
    assert snapshot.sequence == 3
    assert snapshot.filter_state.month == 2


def test_close_unsubscribes_and_ignores_later_changes(make_store):
    async def scenario():
        feed = LocalChangeFeed()
        coordinator = _coordinator(make_store(), feed)
        await coordinator.start()
        subscribed = feed.subscriber_count()
        feed.publish(ChangeEvent(collection="bookings"))
        coordinator.close()
        coordinator.notify(ChangeEvent(collection="bookings"))
        await asyncio.sleep(0.15)
        return coordinator, subscribed, feed.subscriber_count()

    coordinator, subscribed, remaining = asyncio.run(scenario())
    assert subscribed == 6
    assert remaining == 0
    assert coordinator.sequence == 1
    assert coordinator.state == SyncState.IDLE
    with pytest.raises(RuntimeError):
        coordinator.start()


def test_cycle_in_flight_at_close_is_discarded(fixture_rows):
    async def scenario():
        coordinator = _coordinator(_DelayedStore(fixture_rows, default=0.02))
        task = coordinator.start()
        coordinator.close()
        result = await task
        return result, coordinator.get_snapshot()

    result, snapshot = asyncio.run(scenario())
    assert result is None
    assert snapshot.kpis is None
    assert snapshot.sequence == 0


def test_total_failure_keeps_previous_metrics(make_store):
    store = make_store()

    async def scenario():
        coordinator = _coordinator(store)
        await coordinator.start()
        first = coordinator.get_snapshot()
        for name in REQUIRED:
            store.fail(name)
        await coordinator.refresh_now()
        second = coordinator.get_snapshot()
        coordinator.close()
        return first, second

    first, second = asyncio.run(scenario())
    assert second.error.startswith("Unable to load dashboard data")
    assert second.kpis == first.kpis
    assert second.series == first.series
    assert second.sequence == first.sequence
    assert second.loading is False


def test_partial_failure_still_publishes_with_warning(make_store):
    store = make_store()
    store.fail("vehicles")

    async def scenario():
        coordinator = _coordinator(store)
        await coordinator.start()
        snapshot = coordinator.get_snapshot()
        coordinator.close()
        return snapshot

    snapshot = asyncio.run(scenario())
    assert snapshot.error is None
    assert snapshot.kpis.total_fleet == 0
    assert snapshot.kpis.total_revenue == Decimal("4030.00")
    assert any("vehicles" in warning for warning in snapshot.warnings)


def test_display_currency_uses_stored_rate(make_store):
    async def scenario():
        coordinator = _coordinator(make_store())
        await coordinator.start()
        await coordinator.set_display_currency("ugx")
        snapshot = coordinator.get_snapshot()
        with pytest.raises(ValueError):
            coordinator.set_display_currency("EUR")
        coordinator.close()
        return snapshot

    snapshot = asyncio.run(scenario())
    assert snapshot.kpis.display_currency == Currency.UGX
    assert snapshot.kpis.total_revenue == Decimal("14911000.00")


def test_series_filter_change_only_touches_that_series(make_store):
    async def scenario():
        coordinator = _coordinator(make_store(), filter_state=FilterState(year=2025))
        await coordinator.start()
        await coordinator.set_series_filter(
            SeriesId.TOP_VEHICLES, SeriesFilter(period=SeriesPeriod.ALL, capacity=CapacityFilter.SEVEN_SEATER)
        )
        snapshot = coordinator.get_snapshot()
        coordinator.close()
        return snapshot

    snapshot = asyncio.run(scenario())
    top = snapshot.series.top_vehicles
    assert [row.id for row in top] == ["v1", "v3"]
    assert all(row.capacity == VehicleCapacity.SEVEN_SEATER for row in top)
    assert snapshot.series_filters.revenue_expenses == SERIES_2025.revenue_expenses


def test_failing_listener_does_not_block_others(make_store):
    async def scenario():
        coordinator = _coordinator(make_store())
        seen = []
        coordinator.add_listener(lambda snapshot: 1 / 0)
        remove = coordinator.add_listener(lambda snapshot: seen.append(snapshot.sequence))
        await coordinator.refresh_now()
        remove()
        await coordinator.refresh_now()
        coordinator.close()
        return seen

    assert asyncio.run(scenario()) == [1]


def test_periodic_rate_refresh_goes_through_debounce(make_store):
    config = EngineConfig(debounce_seconds=0.01, rate_refresh_seconds=0.05)

    async def scenario():
        coordinator = _coordinator(make_store(), config=config)
        await coordinator.start()
        await asyncio.sleep(0.2)
        await coordinator.wait_idle()
        sequence = coordinator.sequence
        coordinator.close()
        return sequence

    assert asyncio.run(scenario()) >= 2
