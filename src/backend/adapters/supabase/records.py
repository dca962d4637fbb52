from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional

from common.metrics_engine.models import (
    BASE_CURRENCY,
    BookingRecord,
    BookingStatus,
    Currency,
    ExchangeRateRecord,
    ExpenseRequisitionRecord,
    RequisitionStatus,
    TourBookingRecord,
    TransactionRecord,
    TransactionType,
    VehicleRecord,
    VehicleStatus,
)

_BOOKING_STATUS_ALIASES = {
    "pending": BookingStatus.PENDING,
    "confirmed": BookingStatus.CONFIRMED,
    "in-progress": BookingStatus.IN_PROGRESS,
    "in progress": BookingStatus.IN_PROGRESS,
    "in_progress": BookingStatus.IN_PROGRESS,
    "active": BookingStatus.IN_PROGRESS,
    "completed": BookingStatus.COMPLETED,
    "cancelled": BookingStatus.CANCELLED,
    "canceled": BookingStatus.CANCELLED,
}

# Column suffix per currency on the tour bookings table, e.g. total_price_usd.
_TOUR_MONEY_COLUMNS = {
    "revenue": "total_price",
    "direct_expenses": "total_expenses",
    "vehicle_hire_cost": "vehicle_hire_cost",
}


def _parse_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        # Avoid float binary artifacts: go through str.
        parsed = Decimal(str(value))
        return parsed if parsed.is_finite() else None
    if isinstance(value, str):
        s = value.strip().replace(",", "")
        if not s:
            return None
        try:
            parsed = Decimal(s)
        except InvalidOperation:
            return None
        return parsed if parsed.is_finite() else None
    return None


def _parse_amount(value: Any) -> Decimal:
    """Non-negative amount; missing, malformed or negative values become zero."""
    parsed = _parse_decimal(value)
    if parsed is None or parsed < 0:
        return Decimal("0")
    return parsed


def parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str) and value.strip():
        s = value.strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(s)
        except ValueError:
            return None
    else:
        return None
    # Naive timestamps from the store are UTC.
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_optional_str(value: Any) -> Optional[str]:
    text = _parse_str(value)
    return text or None


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "t", "1", "yes")
    if isinstance(value, (int, float)):
        return value != 0
    return False


def parse_currency(value: Any) -> Currency:
    code = _parse_str(value).upper()
    try:
        return Currency(code)
    except ValueError:
        return BASE_CURRENCY


def parse_booking_status(value: Any) -> BookingStatus:
    return _BOOKING_STATUS_ALIASES.get(_parse_str(value).lower(), BookingStatus.OTHER)


def parse_vehicle_status(value: Any) -> VehicleStatus:
    normalized = _parse_str(value).lower().replace("-", "_").replace(" ", "_")
    try:
        return VehicleStatus(normalized)
    except ValueError:
        return VehicleStatus.OTHER


def parse_requisition_status(value: Any) -> RequisitionStatus:
    normalized = _parse_str(value).lower()
    for status in RequisitionStatus:
        if status.value.lower() == normalized:
            return status
    if normalized == "canceled":
        return RequisitionStatus.CANCELLED
    return RequisitionStatus.OTHER


def parse_transaction_type(value: Any) -> TransactionType:
    try:
        return TransactionType(_parse_str(value).lower())
    except ValueError:
        return TransactionType.OTHER


def booking_from_row(row: Mapping[str, Any]) -> BookingRecord:
    # Older rows carry total_cost instead of total_amount.
    total = row.get("total_amount")
    if total is None:
        total = row.get("total_cost")
    return BookingRecord(
        id=_parse_str(row.get("id")),
        booking_reference=_parse_str(row.get("booking_reference") or row.get("booking_number")),
        start_date=parse_datetime(row.get("start_date")),
        end_date=parse_datetime(row.get("end_date")),
        status=parse_booking_status(row.get("status")),
        amount_paid=_parse_amount(row.get("amount_paid")),
        total_cost=_parse_amount(total),
        currency=parse_currency(row.get("currency")),
        assigned_vehicle_id=_parse_optional_str(row.get("assigned_vehicle_id")),
        assigned_user_id=_parse_optional_str(row.get("assigned_to")),
        client_id=_parse_optional_str(row.get("client_id")),
        client_name=_parse_str(row.get("client_name")),
        created_at=parse_datetime(row.get("created_at")),
    )


def tour_booking_from_row(row: Mapping[str, Any]) -> TourBookingRecord:
    money: dict[str, dict[Currency, Decimal]] = {}
    for field_name, prefix in _TOUR_MONEY_COLUMNS.items():
        amounts: dict[Currency, Decimal] = {}
        for currency in Currency:
            raw = row.get(f"{prefix}_{currency.value.lower()}")
            if raw is None:
                continue
            amounts[currency] = _parse_amount(raw)
        money[field_name] = amounts
    return TourBookingRecord(
        id=_parse_str(row.get("id")),
        start_date=parse_datetime(row.get("start_date")),
        end_date=parse_datetime(row.get("end_date")),
        **money,
    )


def transaction_from_row(row: Mapping[str, Any]) -> TransactionRecord:
    return TransactionRecord(
        id=_parse_str(row.get("id")),
        transaction_date=parse_datetime(row.get("transaction_date")),
        amount=_parse_amount(row.get("amount")),
        currency=parse_currency(row.get("currency")),
        transaction_type=parse_transaction_type(row.get("transaction_type")),
        status=_parse_str(row.get("status")),
        category=_parse_str(row.get("category")),
        description=_parse_str(row.get("description")),
        reference_number=_parse_optional_str(row.get("reference_number")),
    )


def requisition_from_row(row: Mapping[str, Any]) -> ExpenseRequisitionRecord:
    amount_base = _parse_decimal(row.get("amount_usd"))
    # A zero or negative pre-converted amount is treated as absent.
    if amount_base is not None and amount_base <= 0:
        amount_base = None
    return ExpenseRequisitionRecord(
        id=_parse_str(row.get("id")),
        cr_number=_parse_str(row.get("cr_number")),
        created_at=parse_datetime(row.get("created_at")),
        date_completed=parse_datetime(row.get("date_completed")),
        status=parse_requisition_status(row.get("status")),
        expense_category=_parse_str(row.get("expense_category")),
        total_cost=_parse_amount(row.get("total_cost")),
        currency=parse_currency(row.get("currency")),
        amount_base=amount_base,
        soft_deleted=_parse_bool(row.get("soft_deleted")),
    )


def vehicle_from_row(row: Mapping[str, Any]) -> VehicleRecord:
    driver = row.get("drivers")
    driver_name = driver.get("full_name") if isinstance(driver, dict) else row.get("driver_name")
    return VehicleRecord(
        id=_parse_str(row.get("id")),
        license_plate=_parse_str(row.get("license_plate")),
        make=_parse_str(row.get("make")),
        model=_parse_str(row.get("model")),
        capacity=_parse_str(row.get("capacity")),
        status=parse_vehicle_status(row.get("status")),
        driver_name=_parse_str(driver_name),
    )


def exchange_rate_from_row(
    row: Mapping[str, Any], *, base: Currency = BASE_CURRENCY
) -> ExchangeRateRecord | None:
    """
    Read either schema: from_currency/to_currency/rate, or currency/rate (base -> currency).

    Returns None for rows with no target currency.
    """
    target = _parse_str(row.get("to_currency")).upper()
    source = _parse_str(row.get("from_currency")).upper()
    if not target:
        target = _parse_str(row.get("currency")).upper()
        source = base.value
    if not target:
        return None
    return ExchangeRateRecord(
        source_currency=source,
        target_currency=target,
        rate=_parse_amount(row.get("rate")),
        timestamp=parse_datetime(row.get("created_at")) or parse_datetime(row.get("effective_date")),
    )


def name_lookup_from_rows(rows: Iterable[Mapping[str, Any]], *, name_field: str) -> dict[str, str]:
    lookup: dict[str, str] = {}
    for row in rows:
        key = _parse_str(row.get("id"))
        name = _parse_str(row.get(name_field))
        if key and name:
            lookup[key] = name
    return lookup


def exchange_rates_from_rows(
    rows: Iterable[Mapping[str, Any]], *, base: Currency = BASE_CURRENCY
) -> list[ExchangeRateRecord]:
    records = (exchange_rate_from_row(row, base=base) for row in rows)
    return [record for record in records if record is not None]
