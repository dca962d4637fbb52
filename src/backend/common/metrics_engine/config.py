from __future__ import annotations

import json
import os
from decimal import Decimal
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field

from .models import BASE_CURRENCY, Currency

DEFAULT_RATES: Dict[Currency, Decimal] = {
    Currency.USD: Decimal("1"),
    Currency.UGX: Decimal("3670"),
    Currency.KES: Decimal("130"),
}


class CollectionNames(BaseModel):
    """Collection (table) names in the record store."""

    bookings: str = "bookings"
    vehicles: str = "vehicles"
    transactions: str = "financial_transactions"
    requisitions: str = "cash_requisitions"
    tour_bookings: str = "safari_bookings"
    exchange_rates: str = "exchange_rates"
    clients: str = "clients"
    profiles: str = "profiles"

    def watched(self) -> tuple[str, ...]:
        return (
            self.bookings,
            self.vehicles,
            self.requisitions,
            self.transactions,
            self.tour_bookings,
            self.exchange_rates,
        )


class EngineConfig(BaseModel):
    base_currency: Currency = BASE_CURRENCY
    default_rates: Dict[Currency, Decimal] = Field(default_factory=lambda: dict(DEFAULT_RATES))

    # Output amounts are quantized to this step; None keeps full precision.
    amount_quantize: Optional[Decimal] = Decimal("0.01")
    utilization_quantize: Decimal = Decimal("0.01")

    debounce_seconds: float = 0.5
    rate_refresh_seconds: float = 3600.0

    # Also treat transactions whose reference or description looks like a CR ledger
    # posting (e.g. "CR-2025-0012") as duplicates of a requisition.
    exclude_requisition_ledger_entries: bool = False

    recent_bookings_limit: int = 10
    collections: CollectionNames = Field(default_factory=CollectionNames)

    def default_rate(self, currency: str) -> Optional[Decimal]:
        try:
            return self.default_rates.get(Currency(currency))
        except ValueError:
            return None


def load_engine_config(path: Path | None = None) -> EngineConfig:
    """Load engine settings from JSON or YAML; missing file means defaults.

    The path defaults to ``DASHBOARD_CONFIG_PATH`` when unset.
    """
    if path is None:
        override = os.getenv("DASHBOARD_CONFIG_PATH", "").strip()
        if not override:
            return EngineConfig()
        path = Path(override).expanduser()

    if not path.exists():
        return EngineConfig()

    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in (".yaml", ".yml"):
        try:
            import yaml  # type: ignore
        except ModuleNotFoundError as exc:
            raise RuntimeError(
                "PyYAML is required to read YAML engine config files."
            ) from exc
        raw = yaml.safe_load(text) or {}
    else:
        raw = json.loads(text or "{}")

    if not isinstance(raw, dict):
        raise ValueError(f"Engine config at {path} must be a mapping.")
    return EngineConfig.model_validate(raw)
