"""Base-currency normalization.

Rates are expressed as units of a currency per one unit of the base currency,
so ``to_base`` divides and ``from_base`` multiplies.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel, Field

from common.logger import get_logger

from .config import DEFAULT_RATES
from .models import BASE_CURRENCY, Currency, ExchangeRateRecord

logger = get_logger(__name__)

CurrencyLike = Union[Currency, str]

_ONE = Decimal("1")


class RateTable(BaseModel):
    base: Currency = BASE_CURRENCY
    rates: Dict[str, Decimal] = Field(default_factory=dict)
    fallback: Dict[str, Decimal] = Field(default_factory=dict)
    # Currencies served from the hard-coded fallback instead of a stored rate.
    degraded: List[str] = Field(default_factory=list)
    fetched_at: Optional[datetime] = None

    def rate_for(self, currency: CurrencyLike) -> Decimal:
        code = _code(currency)
        if code == self.base.value:
            return _ONE
        rate = self.rates.get(code)
        if rate is not None and rate > 0:
            return rate
        fallback = self.fallback.get(code)
        if fallback is not None and fallback > 0:
            logger.debug("Using fallback rate %s for %s.", fallback, code)
            return fallback
        logger.warning("No usable exchange rate for %s; treating amounts as base currency.", code)
        return _ONE

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded)


def _code(currency: CurrencyLike) -> str:
    if isinstance(currency, Currency):
        return currency.value
    return str(currency or "").strip().upper()


def to_base(amount: Optional[Decimal], currency: CurrencyLike, rates: RateTable) -> Decimal:
    if amount is None:
        return Decimal("0")
    return Decimal(amount) / rates.rate_for(currency)


def from_base(amount: Optional[Decimal], currency: CurrencyLike, rates: RateTable) -> Decimal:
    if amount is None:
        return Decimal("0")
    return Decimal(amount) * rates.rate_for(currency)


def convert(
    amount: Optional[Decimal],
    from_currency: CurrencyLike,
    to_currency: CurrencyLike,
    rates: RateTable,
) -> Decimal:
    return from_base(to_base(amount, from_currency, rates), to_currency, rates)


def latest_rates_by_target(
    records: Iterable[ExchangeRateRecord],
    *,
    base: CurrencyLike = BASE_CURRENCY,
) -> Dict[str, ExchangeRateRecord]:
    """Keep only the most recent record per target currency for rows sourced from ``base``."""
    base_code = _code(base)
    latest: Dict[str, ExchangeRateRecord] = {}
    for record in records:
        if _code(record.source_currency) != base_code:
            continue
        target = _code(record.target_currency)
        if not target:
            continue
        current = latest.get(target)
        if current is None or _is_newer(record, current):
            latest[target] = record
    return latest


def _is_newer(candidate: ExchangeRateRecord, current: ExchangeRateRecord) -> bool:
    if candidate.timestamp is None:
        return False
    if current.timestamp is None:
        return True
    return candidate.timestamp > current.timestamp


def build_rate_table(
    records: Iterable[ExchangeRateRecord],
    *,
    base: Currency = BASE_CURRENCY,
    defaults: Mapping[Currency, Decimal] | None = None,
    fetched_at: Optional[datetime] = None,
) -> RateTable:
    defaults = dict(defaults or DEFAULT_RATES)
    fallback = {c.value: r for c, r in defaults.items()}
    latest = latest_rates_by_target(records, base=base)

    rates: Dict[str, Decimal] = {base.value: _ONE}
    degraded: List[str] = []
    for currency in Currency:
        code = currency.value
        if code == base.value:
            continue
        record = latest.get(code)
        if record is not None and record.rate > 0:
            rates[code] = record.rate
            continue
        default = fallback.get(code)
        if default is None:
            logger.warning("No stored or default exchange rate for %s.", code)
            continue
        logger.warning(
            "Exchange rate %s->%s not found; using fallback rate %s (degraded accuracy).",
            base.value,
            code,
            default,
        )
        rates[code] = default
        degraded.append(code)

    for code, record in latest.items():
        if code not in rates and record.rate > 0:
            rates[code] = record.rate

    return RateTable(
        base=base,
        rates=rates,
        fallback=fallback,
        degraded=degraded,
        fetched_at=fetched_at,
    )


def default_rate_table(
    *,
    base: Currency = BASE_CURRENCY,
    defaults: Mapping[Currency, Decimal] | None = None,
    fetched_at: Optional[datetime] = None,
) -> RateTable:
    """Rate table built purely from the hard-coded fallbacks."""
    return build_rate_table((), base=base, defaults=defaults, fetched_at=fetched_at)


def format_currency(amount: Decimal, currency: CurrencyLike = BASE_CURRENCY) -> str:
    whole = Decimal(amount).quantize(_ONE, rounding=ROUND_HALF_UP)
    formatted = f"{whole:,}"
    code = _code(currency)
    if code == Currency.USD.value:
        return f"${formatted}"
    return f"{code} {formatted}"
