from __future__ import annotations

from ..context import RuleContext
from ..models import VehicleRecord, VehicleStatus
from ..registry import register_rule
from ..rule import Rule


@register_rule
class VEHICLE_HIRED(Rule):
    rule_id = "VEHICLE-HIRED"
    rule_title = "Vehicle is out on hire"
    sources = ["vehicles"]

    def evaluate(self, record: VehicleRecord, ctx: RuleContext) -> bool:
        return record.status in (VehicleStatus.BOOKED, VehicleStatus.RENTED)


@register_rule
class VEHICLE_UNDER_MAINTENANCE(Rule):
    rule_id = "VEHICLE-UNDER-MAINTENANCE"
    rule_title = "Vehicle is in maintenance or out of service"
    sources = ["vehicles"]

    def evaluate(self, record: VehicleRecord, ctx: RuleContext) -> bool:
        return record.status in (VehicleStatus.MAINTENANCE, VehicleStatus.OUT_OF_SERVICE)


@register_rule
class VEHICLE_AVAILABLE(Rule):
    rule_id = "VEHICLE-AVAILABLE"
    rule_title = "Vehicle is available for hire"
    sources = ["vehicles"]

    def evaluate(self, record: VehicleRecord, ctx: RuleContext) -> bool:
        return record.status == VehicleStatus.AVAILABLE
