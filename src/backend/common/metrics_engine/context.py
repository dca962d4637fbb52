from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from .config import EngineConfig
from .currency import RateTable, default_rate_table
from .filters import FilterState


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RuleContext:
    """Everything an eligibility rule may consult besides the record itself."""

    now: datetime = field(default_factory=_utcnow)
    filter_state: FilterState = field(default_factory=FilterState)
    rates: RateTable = field(default_factory=default_rate_table)
    # Requisition numbers already counted as expenses in the current scope.
    counted_requisition_numbers: frozenset[str] = frozenset()
    config: EngineConfig = field(default_factory=EngineConfig)

    def with_counted_requisitions(self, numbers: frozenset[str]) -> "RuleContext":
        return RuleContext(
            now=self.now,
            filter_state=self.filter_state,
            rates=self.rates,
            counted_requisition_numbers=numbers,
            config=self.config,
        )


def quantize_amount(value: Decimal, quantize: Optional[Decimal]) -> Decimal:
    if quantize is None:
        return value
    return value.quantize(quantize, rounding=ROUND_HALF_UP)
