"""
test_schemas.py — Unit tests for submission validation.

Tests cover:
    - Defaults for omitted fields
    - Rejection of unknown keys, unknown enum values and negative amounts
    - Money normalisation to pence and blank-string handling
"""

from datetime import date
from decimal import Decimal

import pytest

from conftest import make_payload
from property_reports.errors import InvalidSubmission
from property_reports.schemas import (
    CostCategory,
    IssueStatus,
    Portfolio,
    TrafficLight,
    parse_submission,
)


class TestValidSubmissions:

    def test_minimal_payload_gets_defaults(self):
        sub = parse_submission({"week_ending": "2026-01-23", "submitted_by": "Sarah"})
        assert sub.week_ending == date(2026, 1, 23)
        assert sub.is_monthly is False
        assert sub.status_52 == TrafficLight.GREEN
        assert sub.compliance_gas is True
        assert sub.tenant_complaints == 0
        assert sub.costs == [] and sub.issues == []

    def test_full_payload_parses_children(self):
        sub = parse_submission(make_payload())
        assert len(sub.costs) == 2
        assert sub.costs[0].category == CostCategory.MAINTENANCE
        assert sub.occupancy[0].portfolio == Portfolio.OLD_ELVET
        assert sub.issues[0].status == IssueStatus.IN_PROGRESS
        assert sub.arrears[0].amount_owed == Decimal("450.00")

    def test_amount_quantised_to_pence(self):
        payload = make_payload(costs=[{"category": "operational", "amount": "10.005"}])
        assert parse_submission(payload).costs[0].amount == Decimal("10.01")

    def test_blank_optional_text_becomes_none(self):
        sub = parse_submission(make_payload(aob="   ", primary_goal=""))
        assert sub.aob is None
        assert sub.primary_goal is None

    def test_cost_date_is_optional(self):
        sub = parse_submission(make_payload(costs=[{"amount": "5.00", "date": ""}]))
        assert sub.costs[0].date is None

    def test_header_fields_exclude_children(self):
        fields = parse_submission(make_payload()).header_fields()
        assert "costs" not in fields and "income" not in fields
        assert fields["submitted_by"] == "Sarah Lee"


class TestRejectedSubmissions:

    def test_unknown_top_level_key_rejected(self):
        with pytest.raises(InvalidSubmission) as excinfo:
            parse_submission(make_payload(favourite_colour="blue"))
        assert excinfo.value.errors[0]["loc"] == ("favourite_colour",)

    def test_unknown_key_in_child_rejected(self):
        payload = make_payload(costs=[{"amount": "5.00", "vat": "1.00"}])
        with pytest.raises(InvalidSubmission):
            parse_submission(payload)

    def test_unknown_traffic_light_rejected(self):
        with pytest.raises(InvalidSubmission):
            parse_submission(make_payload(status_cash="purple"))

    def test_unknown_issue_status_rejected(self):
        payload = make_payload(issues=[{"property": "FFR 1", "issue": "Leak", "status": "lost"}])
        with pytest.raises(InvalidSubmission):
            parse_submission(payload)

    def test_negative_amount_rejected(self):
        with pytest.raises(InvalidSubmission):
            parse_submission(make_payload(costs=[{"amount": "-1.00"}]))

    def test_negative_counter_rejected(self):
        with pytest.raises(InvalidSubmission):
            parse_submission(make_payload(tenant_complaints=-2))

    def test_missing_week_ending_rejected(self):
        payload = make_payload()
        del payload["week_ending"]
        with pytest.raises(InvalidSubmission) as excinfo:
            parse_submission(payload)
        assert "week_ending" in str(excinfo.value)

    def test_invalid_submission_is_value_error(self):
        with pytest.raises(ValueError):
            parse_submission({"submitted_by": "x"})
