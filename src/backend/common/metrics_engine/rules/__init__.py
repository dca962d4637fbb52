from .bookings import BOOKING_ACTIVE, BOOKING_OUTSTANDING, BOOKING_REVENUE_ELIGIBLE
from .requisitions import CR_EXPENSE_ELIGIBLE
from .transactions import TXN_DUPLICATES_COUNTED_CR, TXN_EXPENSE, TXN_INCOME
from .vehicles import VEHICLE_AVAILABLE, VEHICLE_HIRED, VEHICLE_UNDER_MAINTENANCE

__all__ = [
    "BOOKING_REVENUE_ELIGIBLE",
    "BOOKING_ACTIVE",
    "BOOKING_OUTSTANDING",
    "CR_EXPENSE_ELIGIBLE",
    "TXN_INCOME",
    "TXN_EXPENSE",
    "TXN_DUPLICATES_COUNTED_CR",
    "VEHICLE_HIRED",
    "VEHICLE_UNDER_MAINTENANCE",
    "VEHICLE_AVAILABLE",
]
