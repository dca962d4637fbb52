from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from .categories import VehicleCapacity, normalize_vehicle_capacity


class Currency(str, Enum):
    USD = "USD"
    UGX = "UGX"
    KES = "KES"


BASE_CURRENCY = Currency.USD


class BookingStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    IN_PROGRESS = "In-Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    OTHER = "Other"


class VehicleStatus(str, Enum):
    AVAILABLE = "available"
    BOOKED = "booked"
    RENTED = "rented"
    MAINTENANCE = "maintenance"
    OUT_OF_SERVICE = "out_of_service"
    OTHER = "other"


class RequisitionStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    COMPLETED = "Completed"
    RESOLVED = "Resolved"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"
    DECLINED = "Declined"
    OTHER = "Other"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    OTHER = "other"


class BookingRecord(BaseModel):
    id: str
    booking_reference: str = ""
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: BookingStatus = BookingStatus.OTHER
    amount_paid: Decimal = Decimal("0")
    total_cost: Decimal = Decimal("0")
    currency: Currency = BASE_CURRENCY
    assigned_vehicle_id: Optional[str] = None
    assigned_user_id: Optional[str] = None
    client_id: Optional[str] = None
    client_name: str = ""
    created_at: Optional[datetime] = None


class TourBookingRecord(BaseModel):
    """A tour booking; each money field holds one amount per currency column."""

    id: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    revenue: Dict[Currency, Decimal] = Field(default_factory=dict)
    direct_expenses: Dict[Currency, Decimal] = Field(default_factory=dict)
    vehicle_hire_cost: Dict[Currency, Decimal] = Field(default_factory=dict)


class TransactionRecord(BaseModel):
    id: str
    transaction_date: Optional[datetime] = None
    amount: Decimal = Decimal("0")
    currency: Currency = BASE_CURRENCY
    transaction_type: TransactionType = TransactionType.OTHER
    status: str = ""
    category: str = ""
    description: str = ""
    reference_number: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        return self.status.strip().lower() == "cancelled"


class ExpenseRequisitionRecord(BaseModel):
    id: str
    cr_number: str = ""
    created_at: Optional[datetime] = None
    date_completed: Optional[datetime] = None
    status: RequisitionStatus = RequisitionStatus.OTHER
    expense_category: str = ""
    total_cost: Decimal = Decimal("0")
    currency: Currency = BASE_CURRENCY
    # Pre-converted amount in base currency, when the store already holds one.
    amount_base: Optional[Decimal] = None
    soft_deleted: bool = False


class VehicleRecord(BaseModel):
    id: str
    license_plate: str = ""
    make: str = ""
    model: str = ""
    capacity: str = ""
    status: VehicleStatus = VehicleStatus.OTHER
    driver_name: str = ""

    @property
    def capacity_class(self) -> VehicleCapacity:
        return normalize_vehicle_capacity(self.capacity)

    @property
    def display_name(self) -> str:
        return f"{self.make} {self.model} ({self.license_plate})".strip()


class ExchangeRateRecord(BaseModel):
    source_currency: str
    target_currency: str
    rate: Decimal
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class DashboardRecords:
    """Coerced record sets for one fetch cycle, plus name lookups."""

    bookings: tuple[BookingRecord, ...] = ()
    vehicles: tuple[VehicleRecord, ...] = ()
    transactions: tuple[TransactionRecord, ...] = ()
    requisitions: tuple[ExpenseRequisitionRecord, ...] = ()
    tour_bookings: tuple[TourBookingRecord, ...] = ()
    client_names: Mapping[str, str] = field(default_factory=dict)
    profile_names: Mapping[str, str] = field(default_factory=dict)

    def client_name_for(self, booking: BookingRecord) -> str:
        if booking.client_id and booking.client_id in self.client_names:
            return self.client_names[booking.client_id]
        if booking.client_name:
            return booking.client_name
        if booking.assigned_user_id and booking.assigned_user_id in self.profile_names:
            return self.profile_names[booking.assigned_user_id]
        return "Unknown"

    def vehicle_by_id(self) -> dict[str, VehicleRecord]:
        return {v.id: v for v in self.vehicles}


class TourProfitLine(BaseModel):
    id: str
    start_date: Optional[datetime] = None
    revenue_base: Decimal
    expenses_base: Decimal
    # Not clamped; a loss-making tour reports its negative profit here.
    profit_base: Decimal


class CategoryAmount(BaseModel):
    category: str
    amount: Decimal


class OutstandingPayment(BaseModel):
    id: str
    booking_reference: str = ""
    client_name: str = "Unknown"
    balance_due: Decimal
    total_cost: Decimal
    amount_paid: Decimal
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    currency: Currency


class RecentBooking(BaseModel):
    id: str
    booking_reference: str = ""
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: BookingStatus
    amount: Decimal
    client_name: str = "Unknown"
    assigned_vehicle_id: Optional[str] = None


class DashboardKpis(BaseModel):
    display_currency: Currency

    total_revenue: Decimal = Decimal("0")
    booking_revenue: Decimal = Decimal("0")
    tour_profit: Decimal = Decimal("0")
    transaction_revenue: Decimal = Decimal("0")
    revenue_mtd: Decimal = Decimal("0")
    revenue_ytd: Decimal = Decimal("0")

    total_expenses: Decimal = Decimal("0")
    total_expenses_base: Decimal = Decimal("0")
    requisition_expenses: Decimal = Decimal("0")
    transaction_expenses: Decimal = Decimal("0")
    expense_breakdown: List[CategoryAmount] = Field(default_factory=list)

    active_bookings: int = 0
    booking_counts: Dict[BookingStatus, int] = Field(default_factory=dict)
    total_bookings: int = 0
    avg_booking_value: Decimal = Decimal("0")

    fleet_utilization: Decimal = Decimal("0")
    vehicles_hired: int = 0
    vehicles_maintenance: int = 0
    vehicles_available: int = 0
    total_fleet: int = 0

    outstanding_payments_total: Decimal = Decimal("0")
    outstanding_payments_count: int = 0
    outstanding_payments: List[OutstandingPayment] = Field(default_factory=list)

    tour_profit_lines: List[TourProfitLine] = Field(default_factory=list)
    recent_bookings: List[RecentBooking] = Field(default_factory=list)


class MonthlyPoint(BaseModel):
    month: str
    month_index: int
    year: int
    revenue: Decimal
    expenses: Decimal


class VehicleRevenue(BaseModel):
    id: str
    name: str
    full_name: str = "Unknown"
    revenue: Decimal
    trips: int
    capacity: VehicleCapacity


class FleetStatusCount(BaseModel):
    status: VehicleStatus
    count: int


class CapacityStats(BaseModel):
    count: int = 0
    total_revenue: Decimal = Decimal("0")
    total_trips: int = 0
    avg_revenue_per_vehicle: Decimal = Decimal("0")
    avg_trips_per_vehicle: Decimal = Decimal("0")
    vehicles: List[VehicleRevenue] = Field(default_factory=list)


class CapacityComparison(BaseModel):
    seven_seater: CapacityStats = Field(default_factory=CapacityStats)
    five_seater: CapacityStats = Field(default_factory=CapacityStats)


class DashboardSeries(BaseModel):
    monthly_revenue_expenses: List[MonthlyPoint] = Field(default_factory=list)
    expense_categories: List[CategoryAmount] = Field(default_factory=list)
    top_vehicles: List[VehicleRevenue] = Field(default_factory=list)
    fleet_status: List[FleetStatusCount] = Field(default_factory=list)
    capacity_comparison: CapacityComparison = Field(default_factory=CapacityComparison)


class DashboardMetrics(BaseModel):
    kpis: DashboardKpis
    series: DashboardSeries
