from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field

from .currency import RateTable
from .filters import FilterState, SeriesFilters
from .models import DashboardKpis, DashboardSeries


class DashboardSnapshot(BaseModel):
    """The published result of a refresh cycle plus the coordinator's status."""

    kpis: Optional[DashboardKpis] = None
    series: Optional[DashboardSeries] = None
    loading: bool = False
    error: Optional[str] = None
    last_updated: Optional[datetime] = None
    # Sequence number of the cycle that produced ``kpis``/``series``; 0 before the first.
    sequence: int = 0
    warnings: List[str] = Field(default_factory=list)
    filter_state: FilterState = Field(default_factory=FilterState)
    series_filters: SeriesFilters = Field(default_factory=SeriesFilters)
    rates: Optional[RateTable] = None

    @computed_field  # type: ignore[misc]
    @property
    def degraded(self) -> bool:
        return bool(self.warnings) or bool(self.rates and self.rates.is_degraded)
