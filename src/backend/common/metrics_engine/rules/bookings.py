from __future__ import annotations

from ..context import RuleContext
from ..models import BookingRecord, BookingStatus
from ..registry import register_rule
from ..rule import Rule

_ACTIVE_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)


@register_rule
class BOOKING_REVENUE_ELIGIBLE(Rule):
    rule_id = "BOOKING-REVENUE-ELIGIBLE"
    rule_title = "Booking contributes its amount paid to revenue"
    sources = ["bookings"]

    def evaluate(self, record: BookingRecord, ctx: RuleContext) -> bool:
        if record.status in (BookingStatus.COMPLETED, BookingStatus.IN_PROGRESS):
            return True
        return record.status == BookingStatus.CONFIRMED and record.amount_paid > 0


@register_rule
class BOOKING_ACTIVE(Rule):
    """In a period view: Confirmed or In-Progress and starting in the month. All time: running now."""

    rule_id = "BOOKING-ACTIVE"
    rule_title = "Booking counts as active"
    sources = ["bookings"]

    def evaluate(self, record: BookingRecord, ctx: RuleContext) -> bool:
        if not ctx.filter_state.is_all_time:
            # Period view: anything in flight or confirmed inside the selected month.
            return record.status in _ACTIVE_STATUSES and ctx.filter_state.matches(record.start_date)
        if record.status == BookingStatus.IN_PROGRESS:
            return True
        if record.status != BookingStatus.CONFIRMED:
            return False
        if record.start_date is None or record.end_date is None:
            return False
        return record.start_date <= ctx.now <= record.end_date


@register_rule
class BOOKING_OUTSTANDING(Rule):
    rule_id = "BOOKING-OUTSTANDING"
    rule_title = "Booking has a balance still owed"
    sources = ["bookings"]

    def evaluate(self, record: BookingRecord, ctx: RuleContext) -> bool:
        return record.status in _ACTIVE_STATUSES and record.amount_paid < record.total_cost
