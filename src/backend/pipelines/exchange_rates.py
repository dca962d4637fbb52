from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from adapters.supabase.records import exchange_rates_from_rows
from common.logger import get_logger
from common.metrics_engine.config import EngineConfig
from common.metrics_engine.currency import RateTable, build_rate_table, default_rate_table

from .record_store import RecordStore, RecordStoreError

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateFetchResult:
    rates: RateTable
    warnings: tuple[str, ...] = ()


class ExchangeRateService:
    """Builds the rate table from the store's exchange-rate rows, falling back to defaults."""

    def __init__(
        self,
        store: RecordStore,
        *,
        config: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._config = config or EngineConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def get_rates(self) -> RateFetchResult:
        config = self._config
        fetched_at = self._clock()
        collection = config.collections.exchange_rates
        try:
            # Schemas differ (from/to columns or a single currency column), so select everything.
            rows = await self._store.select(collection, ("*",))
        except Exception as exc:
            # Store errors and transport failures alike fall back to the default table.
            level = logging.WARNING if isinstance(exc, RecordStoreError) else logging.ERROR
            logger.log(level, "Exchange rate query failed (%r); using default rates for every currency.", exc)
            rates = default_rate_table(
                base=config.base_currency, defaults=config.default_rates, fetched_at=fetched_at
            )
            reason = str(exc) or type(exc).__name__
            return RateFetchResult(rates=rates, warnings=(f"Exchange rates unavailable: {reason}",))

        records = exchange_rates_from_rows(rows, base=config.base_currency)
        rates = build_rate_table(
            records, base=config.base_currency, defaults=config.default_rates, fetched_at=fetched_at
        )
        warnings = tuple(
            f"Exchange rate for {code} not found; using fallback {rates.fallback.get(code)}."
            for code in rates.degraded
        )
        return RateFetchResult(rates=rates, warnings=warnings)
