from datetime import datetime, timezone
from decimal import Decimal

from common.metrics_engine.calculator import (
    calculate_dashboard,
    calculate_kpis,
    capacity_comparison,
    expense_categories,
    fleet_status_counts,
    monthly_revenue_expenses,
    total_expenses_base,
    vehicle_revenue,
)
from common.metrics_engine.categories import VehicleCapacity
from common.metrics_engine.config import EngineConfig
from common.metrics_engine.filters import CapacityFilter, FilterState, SeriesFilter, SeriesFilters, SeriesPeriod
from common.metrics_engine.models import (
    BookingStatus,
    Currency,
    RequisitionStatus,
    TransactionType,
    VehicleStatus,
)


def _utc(year, month, day):
    return datetime(year, month, day, tzinfo=timezone.utc)


def test_booking_revenue_sums_amount_paid(make_booking, make_records, make_ctx):
    bookings = [
        make_booking(status=BookingStatus.IN_PROGRESS, paid="1210"),
        make_booking(status=BookingStatus.IN_PROGRESS, paid="1760"),
        make_booking(status=BookingStatus.IN_PROGRESS, paid="50", total="400"),
        make_booking(status=BookingStatus.COMPLETED, paid="660"),
    ]
    kpis = calculate_kpis(make_records(bookings=bookings), make_ctx())

    assert kpis.booking_revenue == Decimal("3680")
    assert kpis.total_revenue == Decimal("3680")
    assert kpis.total_bookings == 4


def test_fleet_utilization_counts_booked_and_rented(make_vehicle, make_records, make_ctx):
    vehicles = (
        [make_vehicle(status=VehicleStatus.BOOKED) for _ in range(2)]
        + [make_vehicle(status=VehicleStatus.RENTED) for _ in range(2)]
        + [make_vehicle(status=VehicleStatus.MAINTENANCE)]
        + [make_vehicle(status=VehicleStatus.AVAILABLE) for _ in range(10)]
    )
    kpis = calculate_kpis(make_records(vehicles=vehicles), make_ctx())

    assert kpis.fleet_utilization == Decimal("26.67")
    assert kpis.vehicles_hired == 4
    assert kpis.vehicles_maintenance == 1
    assert kpis.vehicles_available == 10
    assert kpis.total_fleet == 15


def test_empty_fleet_has_zero_utilization(make_records, make_ctx):
    kpis = calculate_kpis(make_records(), make_ctx())
    assert kpis.fleet_utilization == Decimal("0")
    assert kpis.total_revenue == Decimal("0")


def test_requisition_paid_through_transaction_is_counted_once(make_requisition, make_transaction, make_records, make_ctx):
    records = make_records(
        requisitions=[make_requisition(amount="200", cr_number="CR-2025-0001")],
        transactions=[
            make_transaction(amount="200", reference="CR-2025-0001"),
            make_transaction(amount="50"),
        ],
    )
    kpis = calculate_kpis(records, make_ctx())

    assert kpis.total_expenses == Decimal("250")
    assert kpis.requisition_expenses == Decimal("200")
    assert kpis.transaction_expenses == Decimal("50")


def test_transaction_referencing_ineligible_requisition_still_counts(make_requisition, make_transaction, make_records, make_ctx):
    records = make_records(
        requisitions=[
            make_requisition(amount="500", cr_number="CR-2025-0002", status=RequisitionStatus.REJECTED),
        ],
        transactions=[make_transaction(amount="30", reference="CR-2025-0002")],
    )
    assert calculate_kpis(records, make_ctx()).total_expenses == Decimal("30")


def test_tour_profit_clamped_in_aggregate_not_per_tour(make_tour, make_booking, make_records, make_ctx):
    records = make_records(
        bookings=[make_booking(status=BookingStatus.COMPLETED, paid="500")],
        tour_bookings=[
            make_tour(revenue="100", expenses="300"),
            make_tour(revenue="150"),
        ],
    )
    kpis = calculate_kpis(records, make_ctx())

    assert kpis.tour_profit == Decimal("0")
    assert kpis.total_revenue == Decimal("500")
    assert [line.profit_base for line in kpis.tour_profit_lines] == [Decimal("-200.00"), Decimal("150.00")]


def test_tour_amount_falls_back_to_other_currency_column(make_tour, make_records, make_ctx):
    records = make_records(tour_bookings=[make_tour(revenue={"UGX": "367000"}, hire={"USD": "20"})])
    kpis = calculate_kpis(records, make_ctx())
    assert kpis.tour_profit == Decimal("80")


def test_display_currency_converts_at_output(make_booking, make_records, make_ctx):
    ugx = FilterState(year=2025, display_currency=Currency.UGX)
    records = make_records(bookings=[make_booking(status=BookingStatus.COMPLETED, paid="100")])
    kpis = calculate_kpis(records, make_ctx(filter_state=ugx))

    assert kpis.display_currency == Currency.UGX
    assert kpis.total_revenue == Decimal("367000.00")


def test_foreign_currency_amounts_are_normalized_before_summing(make_booking, make_records, make_ctx):
    records = make_records(
        bookings=[
            make_booking(status=BookingStatus.COMPLETED, paid="100"),
            make_booking(status=BookingStatus.COMPLETED, paid="367000", currency=Currency.UGX),
            make_booking(status=BookingStatus.COMPLETED, paid="13000", currency=Currency.KES),
        ]
    )
    assert calculate_kpis(records, make_ctx()).booking_revenue == Decimal("300.00")


def test_requisition_prefers_preconverted_base_amount(make_requisition, make_records, make_ctx):
    records = make_records(
        requisitions=[make_requisition(amount="500000", currency=Currency.UGX, amount_base="50")]
    )
    assert calculate_kpis(records, make_ctx()).total_expenses == Decimal("50")


def test_expense_breakdown_adds_up_to_total(make_requisition, make_transaction, make_records, make_ctx):
    records = make_records(
        requisitions=[
            make_requisition(amount="300", cr_number="CR-2025-0010", category="Fuel for vehicle"),
            make_requisition(amount="100", category="office rent"),
        ],
        transactions=[
            make_transaction(amount="300", reference="CR-2025-0010", category="Fuel"),
            make_transaction(amount="50"),
        ],
    )
    kpis = calculate_kpis(records, make_ctx())

    assert kpis.total_expenses == Decimal("450")
    assert sum(row.amount for row in kpis.expense_breakdown) == kpis.total_expenses
    assert [row.category for row in kpis.expense_breakdown] == ["Fleet Supplies", "Admin Costs", "Operating Expense"]


def test_total_expenses_equals_requisitions_plus_standalone(make_requisition, make_transaction, make_ctx):
    requisitions = [
        make_requisition(amount="120", cr_number="CR-2025-0100"),
        make_requisition(amount="80", cr_number="CR-2025-0101", status=RequisitionStatus.PENDING),
    ]
    transactions = [
        make_transaction(amount="120", reference="CR-2025-0100"),
        make_transaction(amount="80", reference="CR-2025-0101"),
        make_transaction(amount="15", txn_type=TransactionType.INCOME),
    ]
    # The pending requisition is not counted, so its ledger payment stands on its own.
    assert total_expenses_base(requisitions, transactions, make_ctx()) == Decimal("200")


def test_outstanding_payments_sorted_by_balance(make_booking, make_records, make_ctx):
    records = make_records(
        bookings=[
            make_booking(status=BookingStatus.CONFIRMED, paid="400", total="1000"),
            make_booking(status=BookingStatus.IN_PROGRESS, paid="100", total="1500", client_name="Walk-in"),
            make_booking(status=BookingStatus.IN_PROGRESS, paid="500", total="500"),
            make_booking(status=BookingStatus.PENDING, paid="0", total="300"),
        ]
    )
    kpis = calculate_kpis(records, make_ctx())

    assert kpis.outstanding_payments_count == 2
    assert kpis.outstanding_payments_total == Decimal("2000")
    assert [line.balance_due for line in kpis.outstanding_payments] == [Decimal("1400"), Decimal("600")]
    assert kpis.outstanding_payments[0].client_name == "Walk-in"
    assert kpis.outstanding_payments[1].client_name == "Unknown"


def test_client_name_resolution_prefers_client_lookup(make_booking, make_records, make_ctx):
    records = make_records(
        bookings=[
            make_booking(status=BookingStatus.CONFIRMED, paid="0", total="10", client_id="c1", client_name="Typed"),
            make_booking(status=BookingStatus.CONFIRMED, paid="0", total="20", assigned_user_id="p1"),
        ],
        client_names={"c1": "Acme Tours"},
        profile_names={"p1": "Jane Driver"},
    )
    names = [line.client_name for line in calculate_kpis(records, make_ctx()).outstanding_payments]
    assert names == ["Jane Driver", "Acme Tours"]


def test_revenue_to_date_in_all_time_mode(make_booking, make_records, make_ctx):
    records = make_records(
        bookings=[
            make_booking(status=BookingStatus.COMPLETED, paid="100", start=_utc(2025, 6, 2)),
            make_booking(status=BookingStatus.COMPLETED, paid="50", start=_utc(2025, 2, 1)),
            make_booking(status=BookingStatus.COMPLETED, paid="25", start=_utc(2024, 12, 1)),
        ]
    )
    kpis = calculate_kpis(records, make_ctx())

    assert kpis.revenue_mtd == Decimal("100")
    assert kpis.revenue_ytd == Decimal("150")
    assert kpis.booking_revenue == Decimal("175")


def test_recent_bookings_newest_first_and_limited(make_booking, make_records, make_ctx):
    records = make_records(
        bookings=[
            make_booking(created_at=_utc(2025, 6, 1), id="old"),
            make_booking(created_at=_utc(2025, 6, 3), id="newest"),
            make_booking(created_at=_utc(2025, 6, 2), id="middle"),
            make_booking(id="undated"),
        ]
    )
    kpis = calculate_kpis(records, make_ctx(config=EngineConfig(recent_bookings_limit=2)))
    assert [b.id for b in kpis.recent_bookings] == ["newest", "middle"]


def test_monthly_series_dedups_against_whole_scope(make_booking, make_requisition, make_transaction, make_records, make_ctx):
    records = make_records(
        bookings=[make_booking(status=BookingStatus.COMPLETED, paid="100", start=_utc(2025, 3, 4))],
        requisitions=[
            make_requisition(amount="200", cr_number="CR-2025-0003", created_at=_utc(2025, 3, 10)),
        ],
        transactions=[
            make_transaction(amount="200", reference="CR-2025-0003", when=_utc(2025, 4, 2)),
            make_transaction(amount="50", when=_utc(2025, 4, 5)),
        ],
    )
    points = monthly_revenue_expenses(records, SeriesFilter(period=SeriesPeriod.YEAR, year=2025), make_ctx())

    assert len(points) == 12
    march, april = points[2], points[3]
    assert (march.month, march.revenue, march.expenses) == ("Mar", Decimal("100"), Decimal("200"))
    assert (april.month, april.revenue, april.expenses) == ("Apr", Decimal("0"), Decimal("50"))


def test_quarter_series_shows_current_quarter(make_records, make_ctx):
    points = monthly_revenue_expenses(make_records(), SeriesFilter(period=SeriesPeriod.QUARTER, year=2025), make_ctx())
    assert [p.month for p in points] == ["Apr", "May", "Jun"]


def test_expense_categories_drop_zero_and_sort_descending(make_requisition, make_records, make_ctx):
    records = make_records(
        requisitions=[
            make_requisition(amount="100", category="office rent"),
            make_requisition(amount="300", category="Fuel for vehicle"),
            make_requisition(amount="0", category="misc"),
            make_requisition(amount="70", category="park fees", status=RequisitionStatus.REJECTED),
        ]
    )
    rows = expense_categories(records, SeriesFilter(period=SeriesPeriod.YEAR, year=2025), make_ctx())
    assert [(r.category, r.amount) for r in rows] == [
        ("Fleet Supplies", Decimal("300")),
        ("Admin Costs", Decimal("100")),
    ]


def _vehicle_records(make_vehicle, make_booking, make_records):
    vehicles = [
        make_vehicle(id="v1", capacity="7 Seater", license_plate="UAA 001A"),
        make_vehicle(id="v2", capacity="5 Seater", license_plate="UAB 002B"),
        make_vehicle(id="v3", capacity="7 Seater", license_plate="UAC 003C"),
    ]
    june = _utc(2025, 6, 3)
    bookings = [
        make_booking(status=BookingStatus.COMPLETED, paid="300", vehicle_id="v2", start=june),
        make_booking(status=BookingStatus.COMPLETED, paid="200", vehicle_id="v1", start=june),
        make_booking(status=BookingStatus.COMPLETED, paid="300", vehicle_id="v3", start=june),
        make_booking(status=BookingStatus.IN_PROGRESS, paid="100", vehicle_id="v1", start=june),
        make_booking(status=BookingStatus.PENDING, paid="999", vehicle_id="v3", start=june),
        make_booking(status=BookingStatus.COMPLETED, paid="40", start=june),
    ]
    return make_records(vehicles=vehicles, bookings=bookings)


def test_top_vehicles_sorted_by_revenue_then_trips(make_vehicle, make_booking, make_records, make_ctx):
    records = _vehicle_records(make_vehicle, make_booking, make_records)
    june = SeriesFilter(period=SeriesPeriod.SPECIFIC, months=(5,), year=2025)
    rows = vehicle_revenue(records, june, make_ctx())

    assert [r.id for r in rows] == ["v1", "v2", "v3"]
    assert rows[0].revenue == Decimal("300") and rows[0].trips == 2
    assert rows[0].name == "UAA 001A"
    assert rows[0].full_name == "Toyota Land Cruiser (UAA 001A)"


def test_top_vehicles_equal_display_revenue_ranks_by_trips(make_vehicle, make_booking, make_records, make_ctx):
    june = _utc(2025, 6, 3)
    records = make_records(
        vehicles=[make_vehicle(id="v1"), make_vehicle(id="v2")],
        bookings=[
            make_booking(status=BookingStatus.COMPLETED, paid="100.004", vehicle_id="v1", start=june),
            make_booking(status=BookingStatus.COMPLETED, paid="50", vehicle_id="v2", start=june),
            make_booking(status=BookingStatus.COMPLETED, paid="50.001", vehicle_id="v2", start=june),
        ],
    )
    rows = vehicle_revenue(records, SeriesFilter(period=SeriesPeriod.ALL), make_ctx())

    assert [(r.id, r.revenue, r.trips) for r in rows] == [
        ("v2", Decimal("100.00"), 2),
        ("v1", Decimal("100.00"), 1),
    ]


def test_top_vehicles_capacity_filter(make_vehicle, make_booking, make_records, make_ctx):
    records = _vehicle_records(make_vehicle, make_booking, make_records)
    seven = SeriesFilter(period=SeriesPeriod.SPECIFIC, months=(5,), year=2025, capacity=CapacityFilter.SEVEN_SEATER)
    assert [r.id for r in vehicle_revenue(records, seven, make_ctx())] == ["v1", "v3"]


def test_top_vehicles_unknown_vehicle_uses_short_id(make_booking, make_records, make_ctx):
    records = make_records(
        bookings=[make_booking(status=BookingStatus.COMPLETED, paid="10", vehicle_id="ghost-vehicle-1234")]
    )
    rows = vehicle_revenue(records, SeriesFilter(period=SeriesPeriod.ALL), make_ctx())
    assert rows[0].name == "ghost-ve"
    assert rows[0].full_name == "Unknown"
    assert rows[0].capacity == VehicleCapacity.OTHER


def test_capacity_comparison_stats(make_vehicle, make_booking, make_records, make_ctx):
    records = _vehicle_records(make_vehicle, make_booking, make_records)
    result = capacity_comparison(records, SeriesFilter(period=SeriesPeriod.ALL), make_ctx())

    seven, five = result.seven_seater, result.five_seater
    assert (seven.count, seven.total_revenue, seven.total_trips) == (2, Decimal("600"), 3)
    assert seven.avg_revenue_per_vehicle == Decimal("300")
    assert seven.avg_trips_per_vehicle == Decimal("1.5")
    assert (five.count, five.total_revenue, five.total_trips) == (1, Decimal("300"), 1)
    assert five.avg_trips_per_vehicle == Decimal("1.0")


def test_fleet_status_counts_in_status_order(make_vehicle):
    vehicles = [
        make_vehicle(status=VehicleStatus.MAINTENANCE),
        make_vehicle(status=VehicleStatus.AVAILABLE),
        make_vehicle(status=VehicleStatus.BOOKED),
        make_vehicle(status=VehicleStatus.AVAILABLE),
    ]
    assert [(row.status, row.count) for row in fleet_status_counts(vehicles)] == [
        (VehicleStatus.AVAILABLE, 2),
        (VehicleStatus.BOOKED, 1),
        (VehicleStatus.MAINTENANCE, 1),
    ]


def test_series_use_their_own_records(make_booking, make_records, rates, now, june):
    series_records = make_records(
        bookings=[make_booking(status=BookingStatus.COMPLETED, paid="100", start=_utc(2025, 3, 4))]
    )
    filters = SeriesFilters(revenue_expenses=SeriesFilter(period=SeriesPeriod.YEAR, year=2025))
    metrics = calculate_dashboard(make_records(), series_records, rates, june, filters, now=now)

    assert metrics.kpis.total_revenue == Decimal("0")
    assert metrics.series.monthly_revenue_expenses[2].revenue == Decimal("100")


def test_calculate_dashboard_is_deterministic(make_booking, make_vehicle, make_records, rates, now, all_time):
    records = make_records(
        bookings=[make_booking(status=BookingStatus.CONFIRMED, paid="10", total="90", vehicle_id="v1")],
        vehicles=[make_vehicle(id="v1", status=VehicleStatus.BOOKED)],
    )
    filters = SeriesFilters(
        revenue_expenses=SeriesFilter(year=2025),
        expense_categories=SeriesFilter(year=2025),
        top_vehicles=SeriesFilter(period=SeriesPeriod.MONTH, year=2025),
    )
    first = calculate_dashboard(records, records, rates, all_time, filters, now=now)
    second = calculate_dashboard(records, records, rates, all_time, filters, now=now)

    assert first == second
    assert records.bookings[0].amount_paid == Decimal("10")
