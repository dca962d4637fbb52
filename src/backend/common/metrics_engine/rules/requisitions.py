from __future__ import annotations

from ..context import RuleContext
from ..models import ExpenseRequisitionRecord, RequisitionStatus
from ..registry import register_rule
from ..rule import Rule

SETTLED_STATUSES = frozenset(
    {RequisitionStatus.COMPLETED, RequisitionStatus.APPROVED, RequisitionStatus.RESOLVED}
)
EXCLUDED_STATUSES = frozenset(
    {RequisitionStatus.REJECTED, RequisitionStatus.CANCELLED, RequisitionStatus.DECLINED}
)


@register_rule
class CR_EXPENSE_ELIGIBLE(Rule):
    """A completion date settles a requisition whatever its status, unless it was rejected or deleted."""

    rule_id = "CR-EXPENSE-ELIGIBLE"
    rule_title = "Expense requisition counts toward expenses"
    sources = ["cash_requisitions"]

    def evaluate(self, record: ExpenseRequisitionRecord, ctx: RuleContext) -> bool:
        if record.soft_deleted or record.status in EXCLUDED_STATUSES:
            return False
        return record.date_completed is not None or record.status in SETTLED_STATUSES
