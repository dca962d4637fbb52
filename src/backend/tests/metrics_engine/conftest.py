import os
import sys


# Ensure `src/backend` is on sys.path so imports like `import common...` work.
BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from common.metrics_engine.config import EngineConfig
from common.metrics_engine.context import RuleContext
from common.metrics_engine.currency import default_rate_table
from common.metrics_engine.filters import FilterMode, FilterState
from common.metrics_engine.models import (
    BookingRecord,
    BookingStatus,
    Currency,
    DashboardRecords,
    ExpenseRequisitionRecord,
    RequisitionStatus,
    TourBookingRecord,
    TransactionRecord,
    TransactionType,
    VehicleRecord,
    VehicleStatus,
)


def utc(year: int, month: int, day: int, hour: int = 0) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return utc(2025, 6, 15, 12)


@pytest.fixture
def rates():
    return default_rate_table()


@pytest.fixture
def all_time():
    return FilterState(mode=FilterMode.ALL, year=2025)


@pytest.fixture
def june():
    return FilterState(mode=FilterMode.PERIOD, month=5, year=2025)


@pytest.fixture
def make_ctx(now, rates, all_time):
    def _make(*, filter_state=None, counted=(), config=None, rate_table=None) -> RuleContext:
        return RuleContext(
            now=now,
            filter_state=filter_state or all_time,
            rates=rate_table or rates,
            counted_requisition_numbers=frozenset(counted),
            config=config or EngineConfig(),
        )

    return _make


@pytest.fixture
def make_booking():
    counter = {"n": 0}

    def _make(
        *,
        status=BookingStatus.COMPLETED,
        paid="0",
        total=None,
        currency=Currency.USD,
        start=None,
        end=None,
        vehicle_id=None,
        created_at=None,
        **extra,
    ) -> BookingRecord:
        counter["n"] += 1
        start = start or utc(2025, 6, 2)
        return BookingRecord(
            id=extra.pop("id", f"b{counter['n']}"),
            booking_reference=extra.pop("booking_reference", f"BK-{counter['n']:03d}"),
            start_date=start,
            end_date=end or start,
            status=status,
            amount_paid=Decimal(paid),
            total_cost=Decimal(total if total is not None else paid),
            currency=currency,
            assigned_vehicle_id=vehicle_id,
            created_at=created_at,
            **extra,
        )

    return _make


@pytest.fixture
def make_vehicle():
    counter = {"n": 0}

    def _make(*, status=VehicleStatus.AVAILABLE, capacity="7 Seater", **extra) -> VehicleRecord:
        counter["n"] += 1
        return VehicleRecord(
            id=extra.pop("id", f"v{counter['n']}"),
            license_plate=extra.pop("license_plate", f"UAA {counter['n']:03d}A"),
            make=extra.pop("make", "Toyota"),
            model=extra.pop("model", "Land Cruiser"),
            capacity=capacity,
            status=status,
            **extra,
        )

    return _make


@pytest.fixture
def make_transaction():
    counter = {"n": 0}

    def _make(
        *,
        amount,
        txn_type=TransactionType.EXPENSE,
        when=None,
        currency=Currency.USD,
        reference=None,
        status="completed",
        **extra,
    ) -> TransactionRecord:
        counter["n"] += 1
        return TransactionRecord(
            id=extra.pop("id", f"t{counter['n']}"),
            transaction_date=when or utc(2025, 6, 10),
            amount=Decimal(amount),
            currency=currency,
            transaction_type=txn_type,
            status=status,
            reference_number=reference,
            **extra,
        )

    return _make


@pytest.fixture
def make_requisition():
    counter = {"n": 0}

    def _make(
        *,
        amount,
        status=RequisitionStatus.COMPLETED,
        cr_number=None,
        currency=Currency.USD,
        created_at=None,
        date_completed=None,
        category="",
        amount_base=None,
        **extra,
    ) -> ExpenseRequisitionRecord:
        counter["n"] += 1
        return ExpenseRequisitionRecord(
            id=extra.pop("id", f"r{counter['n']}"),
            cr_number=cr_number if cr_number is not None else f"CR-2025-{counter['n']:04d}",
            created_at=created_at or utc(2025, 6, 5),
            date_completed=date_completed,
            status=status,
            expense_category=category,
            total_cost=Decimal(amount),
            currency=currency,
            amount_base=Decimal(amount_base) if amount_base is not None else None,
            **extra,
        )

    return _make


@pytest.fixture
def make_tour():
    counter = {"n": 0}

    def _make(*, revenue=None, expenses=None, hire=None, start=None) -> TourBookingRecord:
        counter["n"] += 1

        def _amounts(value):
            if value is None:
                return {}
            if isinstance(value, dict):
                return {Currency(k): Decimal(v) for k, v in value.items()}
            return {Currency.USD: Decimal(value)}

        return TourBookingRecord(
            id=f"s{counter['n']}",
            start_date=start or utc(2025, 6, 20),
            revenue=_amounts(revenue),
            direct_expenses=_amounts(expenses),
            vehicle_hire_cost=_amounts(hire),
        )

    return _make


@pytest.fixture
def make_records():
    def _make(**collections) -> DashboardRecords:
        return DashboardRecords(
            **{name: rows if isinstance(rows, dict) else tuple(rows) for name, rows in collections.items()}
        )

    return _make
