"""Pure KPI and series calculations.

Every amount is normalized to the base currency before it is summed and is
converted to the display currency (and quantized) only when it is written to
an output model. Nothing here performs I/O or mutates its inputs, so calling
any function twice with the same arguments yields the same result.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Sequence

from .categories import VehicleCapacity, normalize_expense_category
from .config import EngineConfig
from .context import RuleContext, quantize_amount
from .currency import RateTable, from_base, to_base
from .filters import MONTH_ABBREVIATIONS, CapacityFilter, FilterState, SeriesFilter, SeriesFilters, in_month
from .models import (
    BookingRecord,
    BookingStatus,
    CapacityComparison,
    CapacityStats,
    CategoryAmount,
    Currency,
    DashboardKpis,
    DashboardMetrics,
    DashboardRecords,
    DashboardSeries,
    ExpenseRequisitionRecord,
    FleetStatusCount,
    MonthlyPoint,
    OutstandingPayment,
    RecentBooking,
    TourBookingRecord,
    TourProfitLine,
    TransactionRecord,
    VehicleRecord,
    VehicleRevenue,
    VehicleStatus,
)
from .rules import (
    BOOKING_ACTIVE,
    BOOKING_OUTSTANDING,
    BOOKING_REVENUE_ELIGIBLE,
    CR_EXPENSE_ELIGIBLE,
    TXN_EXPENSE,
    TXN_INCOME,
    VEHICLE_AVAILABLE,
    VEHICLE_HIRED,
    VEHICLE_UNDER_MAINTENANCE,
)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")

_revenue_eligible = BOOKING_REVENUE_ELIGIBLE()
_active = BOOKING_ACTIVE()
_outstanding = BOOKING_OUTSTANDING()
_expense_eligible = CR_EXPENSE_ELIGIBLE()
_income = TXN_INCOME()
_standalone_expense = TXN_EXPENSE()
_hired = VEHICLE_HIRED()
_under_maintenance = VEHICLE_UNDER_MAINTENANCE()
_available = VEHICLE_AVAILABLE()


def _display(amount_base: Decimal, ctx: RuleContext) -> Decimal:
    value = from_base(amount_base, ctx.filter_state.display_currency, ctx.rates)
    return quantize_amount(value, ctx.config.amount_quantize)


def _sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, _ZERO)


# --- bookings ---------------------------------------------------------------


def booking_paid_base(booking: BookingRecord, rates: RateTable) -> Decimal:
    return to_base(booking.amount_paid, booking.currency, rates)


def revenue_eligible_bookings(bookings: Iterable[BookingRecord], ctx: RuleContext) -> List[BookingRecord]:
    return [b for b in bookings if _revenue_eligible(b, ctx)]


def booking_revenue(bookings: Iterable[BookingRecord], ctx: RuleContext) -> Decimal:
    """Sum of amount paid over revenue-eligible bookings, in base currency."""
    return _sum(booking_paid_base(b, ctx.rates) for b in revenue_eligible_bookings(bookings, ctx))


def active_booking_count(bookings: Iterable[BookingRecord], ctx: RuleContext) -> int:
    return sum(1 for b in bookings if _active(b, ctx))


def outstanding_bookings(bookings: Iterable[BookingRecord], ctx: RuleContext) -> List[BookingRecord]:
    return [b for b in bookings if _outstanding(b, ctx)]


def balance_due_base(booking: BookingRecord, rates: RateTable) -> Decimal:
    return to_base(booking.total_cost - booking.amount_paid, booking.currency, rates)


# --- tour bookings ----------------------------------------------------------


def _tour_amount_base(amounts: Dict[Currency, Decimal], rates: RateTable) -> Decimal:
    """Prefer the base-currency column; otherwise convert the first populated one."""
    base_amount = amounts.get(rates.base)
    if base_amount:
        return base_amount
    for currency in Currency:
        amount = amounts.get(currency)
        if amount:
            return to_base(amount, currency, rates)
    return _ZERO


def tour_profit_line(tour: TourBookingRecord, rates: RateTable) -> TourProfitLine:
    revenue = _tour_amount_base(tour.revenue, rates)
    expenses = _tour_amount_base(tour.direct_expenses, rates) + _tour_amount_base(tour.vehicle_hire_cost, rates)
    return TourProfitLine(
        id=tour.id,
        start_date=tour.start_date,
        revenue_base=revenue,
        expenses_base=expenses,
        profit_base=revenue - expenses,
    )


def tour_profit_total(tours: Iterable[TourBookingRecord], rates: RateTable) -> Decimal:
    """Raw (unclamped) sum of per-tour profit in base currency."""
    return _sum(tour_profit_line(t, rates).profit_base for t in tours)


# --- transactions and requisitions ------------------------------------------


def transaction_base(txn: TransactionRecord, rates: RateTable) -> Decimal:
    return to_base(txn.amount, txn.currency, rates)


def transaction_income(transactions: Iterable[TransactionRecord], ctx: RuleContext) -> Decimal:
    return _sum(transaction_base(t, ctx.rates) for t in transactions if _income(t, ctx))


def requisition_base(req: ExpenseRequisitionRecord, rates: RateTable) -> Decimal:
    if req.amount_base is not None:
        return req.amount_base
    return to_base(req.total_cost, req.currency, rates)


def eligible_requisitions(
    requisitions: Iterable[ExpenseRequisitionRecord], ctx: RuleContext
) -> List[ExpenseRequisitionRecord]:
    return [r for r in requisitions if _expense_eligible(r, ctx)]


def counted_requisition_numbers(requisitions: Iterable[ExpenseRequisitionRecord]) -> frozenset[str]:
    return frozenset(r.cr_number.strip() for r in requisitions if r.cr_number and r.cr_number.strip())


def standalone_expense_transactions(
    transactions: Iterable[TransactionRecord], ctx: RuleContext
) -> List[TransactionRecord]:
    """Expense transactions that do not repeat a counted requisition.

    ``ctx.counted_requisition_numbers`` must already hold the requisitions
    counted in the same scope.
    """
    return [t for t in transactions if _standalone_expense(t, ctx)]


def _expense_scope(
    requisitions: Iterable[ExpenseRequisitionRecord],
    transactions: Iterable[TransactionRecord],
    ctx: RuleContext,
) -> tuple[List[ExpenseRequisitionRecord], List[TransactionRecord]]:
    counted = eligible_requisitions(requisitions, ctx)
    scoped = ctx.with_counted_requisitions(counted_requisition_numbers(counted))
    return counted, standalone_expense_transactions(transactions, scoped)


def total_expenses_base(
    requisitions: Iterable[ExpenseRequisitionRecord],
    transactions: Iterable[TransactionRecord],
    ctx: RuleContext,
) -> Decimal:
    counted, standalone = _expense_scope(requisitions, transactions, ctx)
    return _sum(requisition_base(r, ctx.rates) for r in counted) + _sum(
        transaction_base(t, ctx.rates) for t in standalone
    )


def _category_amounts(totals: Dict[str, Decimal], ctx: RuleContext) -> List[CategoryAmount]:
    rows = [CategoryAmount(category=name, amount=_display(amount, ctx)) for name, amount in totals.items()]
    rows = [row for row in rows if row.amount > 0]
    rows.sort(key=lambda row: row.amount, reverse=True)
    return rows


# --- vehicles ---------------------------------------------------------------


def fleet_utilization(vehicles: Sequence[VehicleRecord], ctx: RuleContext) -> Decimal:
    if not vehicles:
        return _ZERO
    hired = sum(1 for v in vehicles if _hired(v, ctx))
    value = Decimal(hired) / Decimal(len(vehicles)) * _HUNDRED
    return value.quantize(ctx.config.utilization_quantize, rounding=ROUND_HALF_UP)


def fleet_status_counts(vehicles: Iterable[VehicleRecord]) -> List[FleetStatusCount]:
    counts: Dict[VehicleStatus, int] = {}
    for vehicle in vehicles:
        counts[vehicle.status] = counts.get(vehicle.status, 0) + 1
    return [FleetStatusCount(status=s, count=counts[s]) for s in VehicleStatus if counts.get(s, 0) > 0]


def _vehicle_revenue_base(bookings: Iterable[BookingRecord], ctx: RuleContext) -> "OrderedDict[str, tuple[Decimal, int]]":
    totals: "OrderedDict[str, tuple[Decimal, int]]" = OrderedDict()
    for booking in revenue_eligible_bookings(bookings, ctx):
        vehicle_id = booking.assigned_vehicle_id
        if not vehicle_id:
            continue
        revenue, trips = totals.get(vehicle_id, (_ZERO, 0))
        totals[vehicle_id] = (revenue + booking_paid_base(booking, ctx.rates), trips + 1)
    return totals


def _vehicle_row(vehicle_id: str, vehicle: Optional[VehicleRecord], revenue: Decimal, trips: int) -> VehicleRevenue:
    if vehicle is None:
        return VehicleRevenue(
            id=vehicle_id,
            name=vehicle_id[:8],
            revenue=revenue,
            trips=trips,
            capacity=VehicleCapacity.OTHER,
        )
    return VehicleRevenue(
        id=vehicle_id,
        name=vehicle.license_plate or vehicle_id[:8],
        full_name=vehicle.display_name,
        revenue=revenue,
        trips=trips,
        capacity=vehicle.capacity_class,
    )


def _capacity_allows(capacity_filter: CapacityFilter, capacity: VehicleCapacity) -> bool:
    if capacity_filter == CapacityFilter.SEVEN_SEATER:
        return capacity == VehicleCapacity.SEVEN_SEATER
    if capacity_filter == CapacityFilter.FIVE_SEATER:
        return capacity == VehicleCapacity.FIVE_SEATER
    return True


# --- KPIs -------------------------------------------------------------------


def _revenue_to_date(bookings: Sequence[BookingRecord], ctx: RuleContext) -> tuple[Decimal, Decimal]:
    if not ctx.filter_state.is_all_time:
        revenue = booking_revenue(bookings, ctx)
        return revenue, revenue
    now = ctx.now
    month_start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    mtd = booking_revenue(
        [b for b in bookings if b.start_date is not None and month_start <= b.start_date <= now], ctx
    )
    ytd = booking_revenue([b for b in bookings if b.start_date is not None and b.start_date.year == now.year], ctx)
    return mtd, ytd


def calculate_kpis(records: DashboardRecords, ctx: RuleContext) -> DashboardKpis:
    """KPI cards under the global filter; ``records`` are already time-filtered."""
    rates = ctx.rates
    bookings = records.bookings

    booking_rev = booking_revenue(bookings, ctx)
    profit_lines = [tour_profit_line(t, rates) for t in records.tour_bookings]
    tour_profit = max(_ZERO, _sum(line.profit_base for line in profit_lines))
    txn_income = transaction_income(records.transactions, ctx)
    revenue_mtd, revenue_ytd = _revenue_to_date(bookings, ctx)

    counted, standalone = _expense_scope(records.requisitions, records.transactions, ctx)
    requisition_total = _sum(requisition_base(r, rates) for r in counted)
    transaction_total = _sum(transaction_base(t, rates) for t in standalone)
    expenses_base = requisition_total + transaction_total

    breakdown: Dict[str, Decimal] = {}
    for req in counted:
        name = normalize_expense_category(req.expense_category).value
        breakdown[name] = breakdown.get(name, _ZERO) + requisition_base(req, rates)
    for txn in standalone:
        name = normalize_expense_category(txn.category or "Operating Expense").value
        breakdown[name] = breakdown.get(name, _ZERO) + transaction_base(txn, rates)

    booking_counts: Dict[BookingStatus, int] = {}
    for booking in bookings:
        booking_counts[booking.status] = booking_counts.get(booking.status, 0) + 1
    avg_booking = (
        _sum(to_base(b.total_cost, b.currency, rates) for b in bookings) / len(bookings) if bookings else _ZERO
    )

    owing = outstanding_bookings(bookings, ctx)
    outstanding_lines = [
        OutstandingPayment(
            id=b.id,
            booking_reference=b.booking_reference,
            client_name=records.client_name_for(b),
            balance_due=_display(balance_due_base(b, rates), ctx),
            total_cost=_display(to_base(b.total_cost, b.currency, rates), ctx),
            amount_paid=_display(booking_paid_base(b, rates), ctx),
            start_date=b.start_date,
            end_date=b.end_date,
            currency=b.currency,
        )
        for b in owing
    ]
    outstanding_lines.sort(key=lambda line: line.balance_due, reverse=True)

    recent = sorted((b for b in bookings if b.created_at is not None), key=lambda b: b.created_at, reverse=True)
    recent_lines = [
        RecentBooking(
            id=b.id,
            booking_reference=b.booking_reference,
            start_date=b.start_date,
            end_date=b.end_date,
            status=b.status,
            amount=_display(to_base(b.total_cost, b.currency, rates), ctx),
            client_name=records.client_name_for(b),
            assigned_vehicle_id=b.assigned_vehicle_id,
        )
        for b in recent[: ctx.config.recent_bookings_limit]
    ]

    vehicles = records.vehicles
    quantize = ctx.config.amount_quantize
    return DashboardKpis(
        display_currency=ctx.filter_state.display_currency,
        total_revenue=_display(booking_rev + tour_profit + txn_income, ctx),
        booking_revenue=_display(booking_rev, ctx),
        tour_profit=_display(tour_profit, ctx),
        transaction_revenue=_display(txn_income, ctx),
        revenue_mtd=_display(revenue_mtd, ctx),
        revenue_ytd=_display(revenue_ytd, ctx),
        total_expenses=_display(expenses_base, ctx),
        total_expenses_base=quantize_amount(expenses_base, quantize),
        requisition_expenses=_display(requisition_total, ctx),
        transaction_expenses=_display(transaction_total, ctx),
        expense_breakdown=_category_amounts(breakdown, ctx),
        active_bookings=active_booking_count(bookings, ctx),
        booking_counts=booking_counts,
        total_bookings=len(bookings),
        avg_booking_value=_display(avg_booking, ctx),
        fleet_utilization=fleet_utilization(vehicles, ctx),
        vehicles_hired=sum(1 for v in vehicles if _hired(v, ctx)),
        vehicles_maintenance=sum(1 for v in vehicles if _under_maintenance(v, ctx)),
        vehicles_available=sum(1 for v in vehicles if _available(v, ctx)),
        total_fleet=len(vehicles),
        outstanding_payments_total=_display(_sum(balance_due_base(b, rates) for b in owing), ctx),
        outstanding_payments_count=len(owing),
        outstanding_payments=outstanding_lines,
        tour_profit_lines=[
            line.model_copy(
                update={
                    "revenue_base": quantize_amount(line.revenue_base, quantize),
                    "expenses_base": quantize_amount(line.expenses_base, quantize),
                    "profit_base": quantize_amount(line.profit_base, quantize),
                }
            )
            for line in profit_lines
        ],
        recent_bookings=recent_lines,
    )


# --- series -----------------------------------------------------------------


def monthly_revenue_expenses(
    records: DashboardRecords, series_filter: SeriesFilter, ctx: RuleContext
) -> List[MonthlyPoint]:
    year = series_filter.year
    # Dedup uses every eligible requisition in scope, not only the bucket's month.
    counted_numbers = counted_requisition_numbers(eligible_requisitions(records.requisitions, ctx))
    scoped = ctx.with_counted_requisitions(counted_numbers)

    points: List[MonthlyPoint] = []
    for month in series_filter.months_to_display(ctx.now):
        bookings = [b for b in records.bookings if in_month(b.start_date, year, month)]
        tours = [t for t in records.tour_bookings if in_month(t.start_date, year, month)]
        transactions = [t for t in records.transactions if in_month(t.transaction_date, year, month)]
        requisitions = [r for r in records.requisitions if in_month(r.created_at, year, month)]

        revenue = (
            booking_revenue(bookings, ctx)
            + max(_ZERO, tour_profit_total(tours, ctx.rates))
            + transaction_income(transactions, ctx)
        )
        expenses = _sum(requisition_base(r, ctx.rates) for r in eligible_requisitions(requisitions, ctx)) + _sum(
            transaction_base(t, ctx.rates) for t in standalone_expense_transactions(transactions, scoped)
        )
        points.append(
            MonthlyPoint(
                month=MONTH_ABBREVIATIONS[month],
                month_index=month,
                year=year,
                revenue=_display(revenue, ctx),
                expenses=_display(expenses, ctx),
            )
        )
    return points


def expense_categories(
    records: DashboardRecords, series_filter: SeriesFilter, ctx: RuleContext
) -> List[CategoryAmount]:
    totals: Dict[str, Decimal] = {}
    for req in eligible_requisitions(records.requisitions, ctx):
        if not series_filter.matches(req.created_at, ctx.now):
            continue
        name = normalize_expense_category(req.expense_category).value
        totals[name] = totals.get(name, _ZERO) + requisition_base(req, ctx.rates)
    return _category_amounts(totals, ctx)


def vehicle_revenue(
    records: DashboardRecords, series_filter: SeriesFilter, ctx: RuleContext
) -> List[VehicleRevenue]:
    """Per-vehicle display revenue and trips, sorted revenue desc then trips desc."""
    vehicles_by_id = records.vehicle_by_id()
    bookings = [b for b in records.bookings if series_filter.matches(b.start_date, ctx.now)]
    totals = _vehicle_revenue_base(bookings, ctx)

    # Rank on the amounts as shown so equal display revenue falls through to trips.
    displayed = [(vehicle_id, _display(revenue, ctx), trips) for vehicle_id, (revenue, trips) in totals.items()]
    ranked = sorted(displayed, key=lambda item: (-item[1], -item[2]))
    rows: List[VehicleRevenue] = []
    for vehicle_id, revenue, trips in ranked:
        row = _vehicle_row(vehicle_id, vehicles_by_id.get(vehicle_id), revenue, trips)
        if _capacity_allows(series_filter.capacity, row.capacity):
            rows.append(row)
    return rows


def _capacity_stats(
    fleet_count: int, rows: List[VehicleRevenue], quantize: Optional[Decimal]
) -> CapacityStats:
    total_revenue = _sum(row.revenue for row in rows)
    total_trips = sum(row.trips for row in rows)
    if rows:
        avg_revenue = (total_revenue / len(rows)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        avg_trips = (Decimal(total_trips) / len(rows)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    else:
        avg_revenue = _ZERO
        avg_trips = _ZERO
    return CapacityStats(
        count=fleet_count,
        total_revenue=quantize_amount(total_revenue, quantize),
        total_trips=total_trips,
        avg_revenue_per_vehicle=avg_revenue,
        avg_trips_per_vehicle=avg_trips,
        vehicles=rows,
    )


def capacity_comparison(
    records: DashboardRecords, series_filter: SeriesFilter, ctx: RuleContext
) -> CapacityComparison:
    vehicles_by_id = records.vehicle_by_id()
    bookings = [b for b in records.bookings if series_filter.matches(b.start_date, ctx.now)]
    totals = _vehicle_revenue_base(bookings, ctx)

    by_class: Dict[VehicleCapacity, List[VehicleRevenue]] = {
        VehicleCapacity.SEVEN_SEATER: [],
        VehicleCapacity.FIVE_SEATER: [],
    }
    for vehicle_id, (revenue, trips) in totals.items():
        row = _vehicle_row(vehicle_id, vehicles_by_id.get(vehicle_id), _display(revenue, ctx), trips)
        if row.capacity in by_class:
            by_class[row.capacity].append(row)

    fleet: Dict[VehicleCapacity, int] = {}
    for vehicle in records.vehicles:
        fleet[vehicle.capacity_class] = fleet.get(vehicle.capacity_class, 0) + 1

    quantize = ctx.config.amount_quantize
    return CapacityComparison(
        seven_seater=_capacity_stats(
            fleet.get(VehicleCapacity.SEVEN_SEATER, 0), by_class[VehicleCapacity.SEVEN_SEATER], quantize
        ),
        five_seater=_capacity_stats(
            fleet.get(VehicleCapacity.FIVE_SEATER, 0), by_class[VehicleCapacity.FIVE_SEATER], quantize
        ),
    )


def calculate_series(records: DashboardRecords, series_filters: SeriesFilters, ctx: RuleContext) -> DashboardSeries:
    """Series under their own filters; ``records`` must cover the union of those filters."""
    return DashboardSeries(
        monthly_revenue_expenses=monthly_revenue_expenses(records, series_filters.revenue_expenses, ctx),
        expense_categories=expense_categories(records, series_filters.expense_categories, ctx),
        top_vehicles=vehicle_revenue(records, series_filters.top_vehicles, ctx),
        fleet_status=fleet_status_counts(records.vehicles),
        capacity_comparison=capacity_comparison(records, series_filters.capacity_comparison, ctx),
    )


def calculate_dashboard(
    kpi_records: DashboardRecords,
    series_records: DashboardRecords,
    rates: RateTable,
    filter_state: FilterState,
    series_filters: SeriesFilters,
    *,
    now: Optional[datetime] = None,
    config: Optional[EngineConfig] = None,
) -> DashboardMetrics:
    ctx = RuleContext(
        now=now or datetime.now(timezone.utc),
        filter_state=filter_state,
        rates=rates,
        config=config or EngineConfig(),
    )
    return DashboardMetrics(
        kpis=calculate_kpis(kpi_records, ctx),
        series=calculate_series(series_records, series_filters, ctx),
    )
