"""Source-agnostic metrics engine for the operations dashboard.

This package contains only domain logic:
- Inputs are coerced record sets, a rate table and filter state.
- No Supabase, HTTP, or timer code lives here.
"""

from .calculator import calculate_dashboard, calculate_kpis, calculate_series
from .config import EngineConfig, load_engine_config
from .context import RuleContext
from .currency import RateTable, build_rate_table, default_rate_table, from_base, to_base
from .filters import FilterMode, FilterState, SeriesFilter, SeriesFilters, SeriesId, SeriesPeriod
from .models import (
    BookingRecord,
    DashboardMetrics,
    DashboardRecords,
    ExchangeRateRecord,
    ExpenseRequisitionRecord,
    TourBookingRecord,
    TransactionRecord,
    VehicleRecord,
)
from .snapshot import DashboardSnapshot

# Import built-in rules so they self-register with the global registry.
from . import rules as _builtin_rules  # noqa: F401
