from __future__ import annotations

import re

from ..context import RuleContext
from ..models import TransactionRecord, TransactionType
from ..registry import register_rule
from ..rule import Rule

CR_NUMBER_PATTERN = re.compile(r"CR-\d{4}-\d{4}")


@register_rule
class TXN_INCOME(Rule):
    rule_id = "TXN-INCOME"
    rule_title = "Transaction counts as income"
    sources = ["financial_transactions"]

    def evaluate(self, record: TransactionRecord, ctx: RuleContext) -> bool:
        return record.transaction_type == TransactionType.INCOME and not record.is_cancelled


@register_rule
class TXN_DUPLICATES_COUNTED_CR(Rule):
    """
    The transaction is the ledger side of a requisition already counted in the same scope.

    With `exclude_requisition_ledger_entries` set, anything that looks like a CR posting
    is treated as a duplicate as well.
    """

    rule_id = "TXN-DUPLICATES-COUNTED-CR"
    rule_title = "Transaction repeats an expense already counted from a requisition"
    sources = ["financial_transactions", "cash_requisitions"]

    def evaluate(self, record: TransactionRecord, ctx: RuleContext) -> bool:
        reference = (record.reference_number or "").strip()
        if reference and reference in ctx.counted_requisition_numbers:
            return True
        if not ctx.config.exclude_requisition_ledger_entries:
            return False
        return bool(CR_NUMBER_PATTERN.search(record.description or "")) or reference.startswith("CR-")


_duplicate = TXN_DUPLICATES_COUNTED_CR()


@register_rule
class TXN_EXPENSE(Rule):
    rule_id = "TXN-EXPENSE"
    rule_title = "Transaction counts as a standalone expense"
    sources = ["financial_transactions"]

    def evaluate(self, record: TransactionRecord, ctx: RuleContext) -> bool:
        if record.transaction_type != TransactionType.EXPENSE or record.is_cancelled:
            return False
        return not _duplicate.evaluate(record, ctx)
