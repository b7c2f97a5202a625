"""
test_store.py — Tests for the transactional report store.

Tests cover:
    - Report + child rows written together, header totals equal child sums
    - All-or-nothing insert when a child row is rejected by the database
    - Lookup of unknown ids
    - Listing order (period, then submission time)
    - Narrative / document attachment, previous goals, month queries, dashboard
"""

from datetime import date
from decimal import Decimal

import pytest

from conftest import make_payload
from property_reports.errors import ReportNotFound, StoreError
from property_reports.schemas import CostCategory, TrafficLight, parse_submission
from property_reports.store import MonthlyNarrativeFields


def _create(store, **overrides) -> str:
    return store.create_report(parse_submission(make_payload(**overrides)))


class TestCreateReport:

    def test_round_trip_with_children(self, store):
        report_id = _create(store)
        bundle = store.get_report(report_id)
        assert bundle.report.submitted_by == "Sarah Lee"
        assert bundle.report.status_ffr == TrafficLight.AMBER
        assert len(bundle.costs) == 2
        assert len(bundle.occupancy) == 1
        assert len(bundle.issues) == 2
        assert len(bundle.arrears) == 1
        assert len(bundle.income) == 1

    def test_header_totals_equal_child_sums(self, store):
        bundle = store.get_report(_create(store))
        maintenance = sum(c.amount for c in bundle.costs if c.category == CostCategory.MAINTENANCE)
        operational = sum(c.amount for c in bundle.costs if c.category == CostCategory.OPERATIONAL)
        assert bundle.report.total_maintenance == maintenance == Decimal("150.00")
        assert bundle.report.total_operational == operational == Decimal("75.50")

    def test_cost_date_defaults_to_week_ending(self, store):
        bundle = store.get_report(_create(store))
        assert all(c.cost_date == date(2026, 1, 23) for c in bundle.costs)

    def test_no_children(self, store):
        report_id = _create(store, costs=[], occupancy=[], issues=[], arrears=[], income=[])
        bundle = store.get_report(report_id)
        assert bundle.costs == []
        assert bundle.report.total_maintenance == Decimal("0.00")

    def test_rejected_child_rolls_back_whole_report(self, store):
        submission = parse_submission(make_payload())
        # bypasses validation; the NOT NULL constraint rejects it at flush
        submission.issues[0].property = None
        with pytest.raises(StoreError):
            store.create_report(submission)
        assert store.list_reports() == []


class TestReads:

    def test_unknown_id_raises_not_found(self, store):
        with pytest.raises(ReportNotFound) as excinfo:
            store.get_report("does-not-exist")
        assert excinfo.value.report_id == "does-not-exist"

    def test_not_found_is_lookup_error(self, store):
        with pytest.raises(LookupError):
            store.get_report("nope")

    def test_list_orders_by_period_then_submission(self, store):
        older_period = _create(store, week_ending="2026-01-16")
        first = _create(store, week_ending="2026-01-23")
        second = _create(store, week_ending="2026-01-23")
        ids = [r.id for r in store.list_reports()]
        assert ids == [second, first, older_period]

    def test_latest_goals_empty_store(self, store):
        assert store.latest_goals() == {
            "primary_goal": None, "secondary_goal": None, "week_ending": None,
        }

    def test_latest_goals_from_most_recent_report(self, store):
        _create(store, week_ending="2026-01-16", primary_goal="Old goal")
        _create(store, week_ending="2026-01-23", primary_goal="New goal")
        goals = store.latest_goals()
        assert goals["primary_goal"] == "New goal"
        assert goals["week_ending"] == date(2026, 1, 23)

    def test_month_queries_filter_on_period(self, store):
        _create(store, week_ending="2026-01-23")
        _create(store, week_ending="2026-01-30")
        _create(store, week_ending="2026-02-06")
        assert len(store.month_costs(2026, 1)) == 4
        assert len(store.month_occupancy(2026, 1)) == 2
        assert len(store.month_income(2026, 2)) == 1
        assert store.month_costs(2025, 12) == []

    def test_dashboard_summary(self, store):
        _create(store, week_ending="2026-01-16",
                costs=[{"category": "maintenance", "amount": "10.00", "date": "2025-12-31"}])
        latest = _create(store, week_ending="2026-01-23")
        summary = store.dashboard_summary(today=date(2026, 1, 25))
        assert summary.total_reports == 2
        assert summary.latest_report.id == latest
        assert summary.month_costs == {
            "maintenance": Decimal("150.00"), "operational": Decimal("75.50"),
        }

    def test_dashboard_summary_empty(self, store):
        summary = store.dashboard_summary(today=date(2026, 1, 25))
        assert summary.total_reports == 0
        assert summary.latest_report is None


class TestAttachments:

    def test_attach_weekly_narrative(self, store):
        report_id = _create(store)
        store.attach_narrative(report_id, ai_summary="All good this week.")
        report = store.get_report(report_id).report
        assert report.ai_summary == "All good this week."
        assert report.monthly_pnl_summary is None

    def test_attach_monthly_narrative(self, store):
        report_id = _create(store)
        store.attach_narrative(
            report_id, monthly=MonthlyNarrativeFields("P&L text", "Occupancy text", "Forward text")
        )
        report = store.get_report(report_id).report
        assert report.monthly_pnl_summary == "P&L text"
        assert report.monthly_occupancy_trends == "Occupancy text"
        assert report.monthly_forward_look == "Forward text"

    def test_attach_document(self, store):
        report_id = _create(store)
        store.attach_document(report_id, "/tmp/Report.pdf")
        assert store.get_report(report_id).report.pdf_path == "/tmp/Report.pdf"

    def test_attach_to_unknown_report(self, store):
        with pytest.raises(ReportNotFound):
            store.attach_document("missing", "/tmp/x.pdf")
