"""Global and per-series time filters.

The global ``FilterState`` shapes store queries and every KPI. Each chart-like
series owns an independent ``SeriesFilter`` that never reads the global one.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import BASE_CURRENCY, Currency

MONTH_ABBREVIATIONS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def _current_year() -> int:
    return datetime.now(timezone.utc).year


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive ``[start, end]`` range of aware UTC datetimes."""

    start: datetime
    end: datetime

    def contains(self, when: Optional[datetime]) -> bool:
        if when is None:
            return False
        return self.start <= when <= self.end

    def union(self, other: "TimeWindow") -> "TimeWindow":
        return TimeWindow(start=min(self.start, other.start), end=max(self.end, other.end))


def month_window(year: int, month_index: int) -> TimeWindow:
    """Calendar month as an inclusive window; ``month_index`` is 0-based."""
    if not 0 <= month_index <= 11:
        raise ValueError(f"month_index must be 0..11, got {month_index}")
    month = month_index + 1
    last_day = calendar.monthrange(year, month)[1]
    return TimeWindow(
        start=datetime(year, month, 1, tzinfo=timezone.utc),
        end=datetime(year, month, last_day, 23, 59, 59, 999999, tzinfo=timezone.utc),
    )


def months_window(year: int, month_indexes: Iterable[int]) -> Optional[TimeWindow]:
    months = sorted(set(month_indexes))
    if not months:
        return None
    return month_window(year, months[0]).union(month_window(year, months[-1]))


def in_month(when: Optional[datetime], year: int, month_index: int) -> bool:
    if when is None:
        return False
    return when.year == year and when.month - 1 == month_index


class FilterMode(str, Enum):
    ALL = "all"
    PERIOD = "period"


class FilterState(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: FilterMode = FilterMode.ALL
    month: Optional[int] = Field(default=None, ge=0, le=11)
    year: int = Field(default_factory=_current_year)
    display_currency: Currency = BASE_CURRENCY

    @model_validator(mode="after")
    def _period_needs_month(self) -> "FilterState":
        if self.mode == FilterMode.PERIOD and self.month is None:
            raise ValueError("A period filter needs a month index (0..11).")
        return self

    @property
    def is_all_time(self) -> bool:
        return self.mode == FilterMode.ALL

    def window(self) -> Optional[TimeWindow]:
        if self.is_all_time:
            return None
        return month_window(self.year, self.month)  # type: ignore[arg-type]

    def matches(self, when: Optional[datetime]) -> bool:
        if self.is_all_time:
            return True
        return in_month(when, self.year, self.month)  # type: ignore[arg-type]

    def updated(self, **changes: Any) -> "FilterState":
        return FilterState.model_validate({**self.model_dump(), **changes})

    def with_period(self, month: Union[int, str, None], year: Optional[int] = None) -> "FilterState":
        year = self.year if year is None else year
        if month is None or (isinstance(month, str) and month.strip().lower() == "all"):
            return self.updated(mode=FilterMode.ALL, month=None, year=year)
        return self.updated(mode=FilterMode.PERIOD, month=int(month), year=year)


class SeriesPeriod(str, Enum):
    YEAR = "year"
    QUARTER = "quarter"
    MONTH = "month"
    SPECIFIC = "specific"
    ALL = "all"


class CapacityFilter(str, Enum):
    ALL = "all"
    SEVEN_SEATER = "7seater"
    FIVE_SEATER = "5seater"


class SeriesId(str, Enum):
    REVENUE_EXPENSES = "revenue_expenses"
    EXPENSE_CATEGORIES = "expense_categories"
    TOP_VEHICLES = "top_vehicles"
    CAPACITY_COMPARISON = "capacity_comparison"


class SeriesFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    period: SeriesPeriod = SeriesPeriod.YEAR
    months: Tuple[int, ...] = ()
    year: int = Field(default_factory=_current_year)
    capacity: CapacityFilter = CapacityFilter.ALL

    @field_validator("months")
    @classmethod
    def _months_in_range(cls, value: Tuple[int, ...]) -> Tuple[int, ...]:
        for month in value:
            if not 0 <= month <= 11:
                raise ValueError(f"month index must be 0..11, got {month}")
        return tuple(sorted(set(value)))

    @model_validator(mode="after")
    def _specific_needs_months(self) -> "SeriesFilter":
        if self.period == SeriesPeriod.SPECIFIC and not self.months:
            raise ValueError("A 'specific' series filter needs at least one month.")
        return self

    def months_to_display(self, now: datetime) -> Tuple[int, ...]:
        if self.period in (SeriesPeriod.YEAR, SeriesPeriod.ALL):
            return tuple(range(12))
        if self.period == SeriesPeriod.QUARTER:
            first = ((now.month - 1) // 3) * 3
            return (first, first + 1, first + 2)
        if self.period == SeriesPeriod.MONTH:
            return (now.month - 1,)
        return self.months

    def matches(self, when: Optional[datetime], now: datetime) -> bool:
        if self.period == SeriesPeriod.ALL:
            return True
        if when is None or when.year != self.year:
            return False
        return (when.month - 1) in self.months_to_display(now)

    def window(self, now: datetime) -> Optional[TimeWindow]:
        if self.period == SeriesPeriod.ALL:
            return None
        return months_window(self.year, self.months_to_display(now))


def _default_top_vehicles_filter() -> SeriesFilter:
    return SeriesFilter(period=SeriesPeriod.MONTH)


def _default_capacity_filter() -> SeriesFilter:
    return SeriesFilter(period=SeriesPeriod.ALL)


class SeriesFilters(BaseModel):
    """The independent per-visualization filters, one per series id."""

    model_config = ConfigDict(frozen=True)

    revenue_expenses: SeriesFilter = Field(default_factory=SeriesFilter)
    expense_categories: SeriesFilter = Field(default_factory=SeriesFilter)
    top_vehicles: SeriesFilter = Field(default_factory=_default_top_vehicles_filter)
    capacity_comparison: SeriesFilter = Field(default_factory=_default_capacity_filter)

    def get(self, series_id: SeriesId) -> SeriesFilter:
        return getattr(self, SeriesId(series_id).value)

    def with_filter(self, series_id: SeriesId, series_filter: SeriesFilter) -> "SeriesFilters":
        return self.model_copy(update={SeriesId(series_id).value: series_filter})

    def union_window(self, now: datetime) -> Optional[TimeWindow]:
        """Smallest window covering every series, or None when any series is all-time."""
        combined: Optional[TimeWindow] = None
        for series_id in SeriesId:
            window = self.get(series_id).window(now)
            if window is None:
                return None
            combined = window if combined is None else combined.union(window)
        return combined
