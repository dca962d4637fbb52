from __future__ import annotations

from enum import Enum
from typing import Optional


class ExpenseCategory(str, Enum):
    OPERATING_EXPENSE = "Operating Expense"
    PETTY_CASH = "Petty Cash"
    FLEET_SUPPLIES = "Fleet Supplies"
    ADMIN_COSTS = "Admin Costs"
    SAFARI_EXPENSE = "Safari Expense"


class VehicleCapacity(str, Enum):
    SEVEN_SEATER = "7 Seater"
    FIVE_SEATER = "5 Seater"
    OTHER = "Other"


# Checked in order; first match wins.
_EXPENSE_CATEGORY_KEYWORDS: tuple[tuple[ExpenseCategory, tuple[str, ...]], ...] = (
    (ExpenseCategory.FLEET_SUPPLIES, ("fleet", "vehicle", "repair", "maintenance", "fuel")),
    (ExpenseCategory.ADMIN_COSTS, ("admin", "office", "supplies", "utilities", "rent")),
    (ExpenseCategory.SAFARI_EXPENSE, ("safari", "tour", "accommodation", "park fees")),
    (ExpenseCategory.PETTY_CASH, ("petty", "cash")),
)

_SEVEN_SEATER_ALIASES = {"large", "suv", "7_seater", "7 seater"}
_FIVE_SEATER_ALIASES = {"medium", "sedan", "5_seater", "5 seater"}


def normalize_expense_category(raw: Optional[str]) -> ExpenseCategory:
    """Map a free-text requisition/transaction category onto the fixed category set."""
    normalized = (raw or "").strip().lower()
    for category, keywords in _EXPENSE_CATEGORY_KEYWORDS:
        if any(keyword in normalized for keyword in keywords):
            return category
    return ExpenseCategory.OPERATING_EXPENSE


def normalize_vehicle_capacity(raw: Optional[object]) -> VehicleCapacity:
    normalized = str(raw or "").strip().lower()
    if not normalized:
        return VehicleCapacity.OTHER
    if "7" in normalized or normalized in _SEVEN_SEATER_ALIASES:
        return VehicleCapacity.SEVEN_SEATER
    if "5" in normalized or normalized in _FIVE_SEATER_ALIASES:
        return VehicleCapacity.FIVE_SEATER
    return VehicleCapacity.OTHER
