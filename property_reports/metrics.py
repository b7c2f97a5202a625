"""
metrics.py — Cost totals, month-end rollups and reporting calendar.

Weekly cost totals are computed with Decimal arithmetic so the header totals
stored with a report equal the sum of its cost rows to the penny. The
month-end rollup used by the monthly narrative is a pandas aggregation over
every report whose period ends in the month.

Calendar rule: a reporting period ends on the next Friday on or after the
given day; the period is a month-end when the Friday one week later falls in
a different calendar month.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable

import pandas as pd

from property_reports.schemas import CostCategory

logger = logging.getLogger(__name__)

FRIDAY = 4


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class CostTotals:
    """Weekly spend split by cost category."""
    maintenance: Decimal = Decimal("0.00")
    operational: Decimal = Decimal("0.00")
    maintenance_items: int = 0
    operational_items: int = 0

    @property
    def total(self) -> Decimal:
        return self.maintenance + self.operational

    @property
    def items(self) -> int:
        return self.maintenance_items + self.operational_items


@dataclass
class MonthlyRollup:
    """Month-to-date position across every report in one calendar month."""
    year: int
    month: int
    total_costs: float = 0.0
    costs_by_category: dict[str, float] = field(default_factory=dict)
    costs_by_portfolio: dict[str, float] = field(default_factory=dict)
    cost_items: int = 0
    income_expected: float = 0.0
    income_received: float = 0.0
    income_outstanding: float = 0.0
    occupancy: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def net_position(self) -> float:
        return round(self.income_received - self.total_costs, 2)

    @property
    def label(self) -> str:
        return date(self.year, self.month, 1).strftime("%B %Y")


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def _gbp(value) -> str:
    """Format a GBP amount to the penny, e.g. 1234.5 → '£1,234.50'."""
    value = Decimal(str(value))
    sign = "-" if value < 0 else ""
    return f"{sign}£{abs(value):,.2f}"


def _pct(value: float, decimals: int = 1) -> str:
    """Format a ratio as a percentage string (0.925 → '92.5%')."""
    return f"{value * 100:.{decimals}f}%"


# ---------------------------------------------------------------------------
# Weekly totals
# ---------------------------------------------------------------------------

def cost_totals(costs: Iterable[Any]) -> CostTotals:
    """Sum cost rows by category.

    Accepts submission rows or stored rows; anything with `category` and
    `amount` attributes.
    """
    totals = CostTotals()
    for cost in costs:
        amount = Decimal(str(cost.amount or 0))
        if cost.category == CostCategory.MAINTENANCE:
            totals.maintenance += amount
            totals.maintenance_items += 1
        elif cost.category == CostCategory.OPERATIONAL:
            totals.operational += amount
            totals.operational_items += 1
    return totals


def split_costs(costs: Iterable[Any]) -> tuple[list, list]:
    """Return (maintenance, operational) cost rows in their original order."""
    costs = list(costs)
    maintenance = [c for c in costs if c.category == CostCategory.MAINTENANCE]
    operational = [c for c in costs if c.category == CostCategory.OPERATIONAL]
    return maintenance, operational


def open_issues(issues: Iterable[Any]) -> list:
    return [i for i in issues if not i.completed]


# ---------------------------------------------------------------------------
# Reporting calendar
# ---------------------------------------------------------------------------

def week_ending_for(today: date) -> date:
    """Next Friday on or after `today`."""
    return today + timedelta(days=(FRIDAY - today.weekday()) % 7)


def is_month_end(week_ending: date) -> bool:
    """True when the following Friday falls in a different month."""
    return (week_ending + timedelta(days=7)).month != week_ending.month


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First day of the month and first day of the next month."""
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, end


# ---------------------------------------------------------------------------
# Month-end rollup
# ---------------------------------------------------------------------------

_OCCUPANCY_COLUMNS = [
    "portfolio", "total_units", "occupied", "vacant", "ending_30_days",
    "ending_60_days", "viewings_booked", "offers_in_progress",
]


def monthly_rollup(
    year: int,
    month: int,
    costs: Iterable[Any],
    occupancy: Iterable[Any],
    income: Iterable[Any],
) -> MonthlyRollup:
    """Aggregate a month of cost, occupancy and income rows.

    Occupancy rows are expected in period order; the latest snapshot per
    portfolio is reported, with viewings summed across the month.

    Args:
        year: Calendar year.
        month: Calendar month (1-12).
        costs: Cost rows for the month.
        occupancy: Occupancy snapshots for the month, oldest first.
        income: Income lines for the month.

    Returns:
        MonthlyRollup instance.
    """
    cost_df = pd.DataFrame(
        [
            {"category": c.category.value, "portfolio": c.portfolio.value,
             "amount": float(c.amount)}
            for c in costs
        ],
        columns=["category", "portfolio", "amount"],
    ).astype({"amount": float})
    income_df = pd.DataFrame(
        [
            {"expected": float(i.expected), "received": float(i.received),
             "outstanding": float(i.outstanding)}
            for i in income
        ],
        columns=["expected", "received", "outstanding"],
    ).astype(float)
    occ_df = pd.DataFrame(
        [
            {col: (getattr(o, col).value if col == "portfolio" else getattr(o, col))
             for col in _OCCUPANCY_COLUMNS}
            for o in occupancy
        ],
        columns=_OCCUPANCY_COLUMNS,
    ).astype({col: int for col in _OCCUPANCY_COLUMNS[1:]})

    rollup = MonthlyRollup(year=year, month=month)
    rollup.cost_items = len(cost_df)
    rollup.total_costs = round(float(cost_df["amount"].sum()), 2)
    rollup.costs_by_category = {
        c.value: 0.0 for c in CostCategory
    } | cost_df.groupby("category")["amount"].sum().round(2).to_dict()
    rollup.costs_by_portfolio = cost_df.groupby("portfolio")["amount"].sum().round(2).to_dict()

    rollup.income_expected = round(float(income_df["expected"].sum()), 2)
    rollup.income_received = round(float(income_df["received"].sum()), 2)
    rollup.income_outstanding = round(float(income_df["outstanding"].sum()), 2)

    if not occ_df.empty:
        latest = occ_df.groupby("portfolio").last()
        viewings = occ_df.groupby("portfolio")["viewings_booked"].sum()
        for portfolio, row in latest.iterrows():
            units = int(row["total_units"])
            rollup.occupancy[portfolio] = {
                "total_units": units,
                "occupied": int(row["occupied"]),
                "vacant": int(row["vacant"]),
                "ending_30_days": int(row["ending_30_days"]),
                "ending_60_days": int(row["ending_60_days"]),
                "offers_in_progress": int(row["offers_in_progress"]),
                "viewings_month": int(viewings[portfolio]),
                "occupancy_rate": (int(row["occupied"]) / units) if units else 0.0,
            }

    logger.debug(
        "Monthly rollup %s -- %d cost items, costs %.2f, received %.2f",
        rollup.label, rollup.cost_items, rollup.total_costs, rollup.income_received,
    )
    return rollup
