"""
test_metrics.py — Unit tests for cost totals, the reporting calendar and
the month-end rollup.

Tests cover:
    - Formatting helpers (_gbp, _pct)
    - Weekly cost totals to the penny
    - Period-end and month-end rules, including the December/January boundary
    - Monthly rollup aggregation (pandas)
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import pytest

from property_reports.metrics import (
    _gbp,
    _pct,
    cost_totals,
    is_month_end,
    month_bounds,
    monthly_rollup,
    open_issues,
    split_costs,
    week_ending_for,
)
from property_reports.schemas import CostCategory, Portfolio


@dataclass
class Row:
    category: CostCategory = CostCategory.MAINTENANCE
    amount: Decimal = Decimal("0.00")
    portfolio: Portfolio = Portfolio.OLD_ELVET


@dataclass
class Snapshot:
    portfolio: Portfolio
    total_units: int = 20
    occupied: int = 18
    vacant: int = 2
    ending_30_days: int = 0
    ending_60_days: int = 0
    viewings_booked: int = 0
    offers_in_progress: int = 0


@dataclass
class IncomeLine:
    expected: Decimal
    received: Decimal
    outstanding: Decimal


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

class TestFormattingHelpers:

    def test_gbp_pence(self):
        assert _gbp(Decimal("225.5")) == "£225.50"

    def test_gbp_thousands_separator(self):
        assert _gbp(1234.5) == "£1,234.50"

    def test_gbp_negative(self):
        assert _gbp(-40) == "-£40.00"

    def test_gbp_zero(self):
        assert _gbp(0) == "£0.00"

    def test_pct(self):
        assert _pct(0.925) == "92.5%"


# ---------------------------------------------------------------------------
# Weekly totals
# ---------------------------------------------------------------------------

class TestCostTotals:

    def test_split_by_category(self):
        totals = cost_totals([
            Row(CostCategory.MAINTENANCE, Decimal("150.00")),
            Row(CostCategory.OPERATIONAL, Decimal("75.50")),
        ])
        assert totals.maintenance == Decimal("150.00")
        assert totals.operational == Decimal("75.50")
        assert totals.total == Decimal("225.50")
        assert totals.items == 2

    def test_exact_to_the_penny(self):
        # 0.10 added thirty times drifts in binary floating point
        totals = cost_totals([Row(CostCategory.OPERATIONAL, Decimal("0.10"))] * 30)
        assert totals.operational == Decimal("3.00")

    def test_empty(self):
        totals = cost_totals([])
        assert totals.total == Decimal("0.00")
        assert totals.items == 0

    def test_split_costs_keeps_order(self):
        a = Row(CostCategory.OPERATIONAL, Decimal("1"))
        b = Row(CostCategory.MAINTENANCE, Decimal("2"))
        c = Row(CostCategory.OPERATIONAL, Decimal("3"))
        maintenance, operational = split_costs([a, b, c])
        assert maintenance == [b]
        assert operational == [a, c]

    def test_open_issues_excludes_completed(self):
        @dataclass
        class Issue:
            completed: bool

        issues = [Issue(False), Issue(True), Issue(False)]
        assert len(open_issues(issues)) == 2


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------

class TestReportingCalendar:

    @pytest.mark.parametrize("today, expected", [
        (date(2026, 1, 23), date(2026, 1, 23)),   # Friday is its own period end
        (date(2026, 1, 24), date(2026, 1, 30)),   # Saturday rolls to next Friday
        (date(2027, 12, 27), date(2027, 12, 31)),
        (date(2028, 1, 1), date(2028, 1, 7)),
    ])
    def test_week_ending_is_next_friday(self, today, expected):
        assert week_ending_for(today) == expected
        assert expected.weekday() == 4

    def test_last_friday_of_month_is_month_end(self):
        assert is_month_end(date(2026, 1, 30)) is True

    def test_earlier_friday_is_not_month_end(self):
        assert is_month_end(date(2026, 1, 23)) is False

    def test_december_last_friday_is_month_end(self):
        assert is_month_end(date(2027, 12, 31)) is True

    def test_first_friday_of_january_is_not_month_end(self):
        assert is_month_end(week_ending_for(date(2028, 1, 1))) is False

    def test_month_bounds_december(self):
        assert month_bounds(2027, 12) == (date(2027, 12, 1), date(2028, 1, 1))

    def test_month_bounds_mid_year(self):
        assert month_bounds(2026, 6) == (date(2026, 6, 1), date(2026, 7, 1))


# ---------------------------------------------------------------------------
# Monthly rollup
# ---------------------------------------------------------------------------

class TestMonthlyRollup:

    def test_costs_grouped_by_category_and_portfolio(self):
        rollup = monthly_rollup(2026, 1, [
            Row(CostCategory.MAINTENANCE, Decimal("100.00"), Portfolio.OLD_ELVET),
            Row(CostCategory.MAINTENANCE, Decimal("50.25"), Portfolio.FFR_GROUP),
            Row(CostCategory.OPERATIONAL, Decimal("20.00"), Portfolio.FFR_GROUP),
        ], [], [])
        assert rollup.cost_items == 3
        assert rollup.total_costs == pytest.approx(170.25)
        assert rollup.costs_by_category["maintenance"] == pytest.approx(150.25)
        assert rollup.costs_by_category["operational"] == pytest.approx(20.00)
        assert rollup.costs_by_portfolio["ffr_group"] == pytest.approx(70.25)

    def test_empty_month(self):
        rollup = monthly_rollup(2026, 2, [], [], [])
        assert rollup.total_costs == 0.0
        assert rollup.costs_by_category == {"maintenance": 0.0, "operational": 0.0}
        assert rollup.occupancy == {}
        assert rollup.label == "February 2026"

    def test_income_and_net_position(self):
        rollup = monthly_rollup(2026, 1, [Row(amount=Decimal("500.00"))], [], [
            IncomeLine(Decimal("9000"), Decimal("8000"), Decimal("1000")),
            IncomeLine(Decimal("1000"), Decimal("1000"), Decimal("0")),
        ])
        assert rollup.income_expected == pytest.approx(10000.0)
        assert rollup.income_received == pytest.approx(9000.0)
        assert rollup.income_outstanding == pytest.approx(1000.0)
        assert rollup.net_position == pytest.approx(8500.0)

    def test_latest_occupancy_snapshot_per_portfolio(self):
        rollup = monthly_rollup(2026, 1, [], [
            Snapshot(Portfolio.OLD_ELVET, occupied=16, vacant=4, viewings_booked=3),
            Snapshot(Portfolio.FFR_GROUP, total_units=10, occupied=10, vacant=0),
            Snapshot(Portfolio.OLD_ELVET, occupied=18, vacant=2, viewings_booked=2),
        ], [])
        elvet = rollup.occupancy["52_old_elvet"]
        assert elvet["occupied"] == 18
        assert elvet["viewings_month"] == 5
        assert elvet["occupancy_rate"] == pytest.approx(0.9)
        assert rollup.occupancy["ffr_group"]["occupancy_rate"] == pytest.approx(1.0)

    def test_zero_unit_portfolio_has_zero_rate(self):
        rollup = monthly_rollup(2026, 1, [], [
            Snapshot(Portfolio.FFR_GROUP, total_units=0, occupied=0, vacant=0),
        ], [])
        assert rollup.occupancy["ffr_group"]["occupancy_rate"] == 0.0
