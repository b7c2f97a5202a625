"""
schemas.py — Submission payload validation.

Every recognised field of a weekly/monthly report submission is declared
here with its default. Unknown keys are rejected, status values are closed
enumerations and counters/amounts must be non-negative, so bad input is
stopped at the boundary instead of reaching the store as free text.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, BeforeValidator, Field, ValidationError

from property_reports.errors import InvalidSubmission


class TrafficLight(str, Enum):
    GREEN = "green"
    AMBER = "amber"
    RED = "red"


class Portfolio(str, Enum):
    OLD_ELVET = "52_old_elvet"
    FFR_GROUP = "ffr_group"


class CostCategory(str, Enum):
    MAINTENANCE = "maintenance"
    OPERATIONAL = "operational"


class IssueStatus(str, Enum):
    AWAITING_QUOTE = "awaiting_quote"
    QUOTED = "quoted"
    APPROVED = "approved"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"


PORTFOLIO_LABELS = {
    Portfolio.OLD_ELVET: "52 Old Elvet",
    Portfolio.FFR_GROUP: "FFR Group",
}


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _to_pence(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


OptionalText = Annotated[Optional[str], BeforeValidator(_blank_to_none)]
OptionalDate = Annotated[Optional[date], BeforeValidator(_blank_to_none)]
Money = Annotated[Decimal, Field(ge=0), AfterValidator(_to_pence)]
Count = Annotated[int, Field(ge=0)]


class _Strict(BaseModel):
    model_config = {"extra": "forbid", "str_strip_whitespace": True}


class CostIn(_Strict):
    category: CostCategory = CostCategory.MAINTENANCE
    date: OptionalDate = None  # defaults to the report's week ending when stored
    property: OptionalText = None
    description: str = ""
    contractor_supplier: OptionalText = None
    amount: Money = Decimal("0.00")
    is_budgeted: bool = False
    is_recurring: bool = False
    approved_by: OptionalText = None
    notes: OptionalText = None
    portfolio: Portfolio = Portfolio.OLD_ELVET


class OccupancyIn(_Strict):
    portfolio: Portfolio
    total_units: Count = 0
    occupied: Count = 0
    vacant: Count = 0
    ending_30_days: Count = 0
    ending_60_days: Count = 0
    viewings_booked: Count = 0
    offers_in_progress: Count = 0


class IssueIn(_Strict):
    property: str = Field(min_length=1)
    issue: str = Field(min_length=1)
    reported_date: OptionalDate = None
    contractor: OptionalText = None
    status: IssueStatus = IssueStatus.AWAITING_QUOTE
    eta: OptionalText = None
    est_cost: Money = Decimal("0.00")
    actual_cost: Money = Decimal("0.00")
    completed: bool = False
    notes: OptionalText = None


class ArrearsIn(_Strict):
    tenant_name: str = Field(min_length=1)
    property: str = Field(min_length=1)
    amount_owed: Money = Decimal("0.00")
    days_overdue: Count = 0
    action_taken: OptionalText = None
    escalation_needed: bool = False


class IncomeIn(_Strict):
    portfolio: Portfolio
    source: str = Field(min_length=1)
    expected: Money = Decimal("0.00")
    received: Money = Decimal("0.00")
    outstanding: Money = Decimal("0.00")
    notes: OptionalText = None


class ReportSubmission(_Strict):
    """A complete weekly (or month-end) report as submitted by the team."""

    week_ending: date
    submitted_by: str = Field(min_length=1)
    is_monthly: bool = False

    status_52: TrafficLight = TrafficLight.GREEN
    status_ffr: TrafficLight = TrafficLight.GREEN
    status_cash: TrafficLight = TrafficLight.GREEN

    primary_goal: OptionalText = None
    secondary_goal: OptionalText = None
    prev_primary_goal: OptionalText = None
    prev_primary_achieved: bool = False
    prev_primary_note: OptionalText = None
    prev_secondary_goal: OptionalText = None
    prev_secondary_achieved: bool = False
    prev_secondary_note: OptionalText = None

    tenant_complaints: Count = 0
    tenant_complaints_summary: OptionalText = None
    tenant_compliments: Count = 0
    inspections_done: Count = 0
    inspections_scheduled: Count = 0
    safeguarding_concerns: bool = False
    safeguarding_detail: OptionalText = None

    compliance_gas: bool = True
    compliance_electrical: bool = True
    compliance_epc: bool = True
    compliance_smoke_co: bool = True
    compliance_hmo: bool = True
    compliance_insurance: bool = True
    compliance_deposit: bool = True
    compliance_right_to_rent: bool = True
    compliance_exceptions: OptionalText = None

    future_issues: OptionalText = None
    aob: OptionalText = None

    costs: list[CostIn] = Field(default_factory=list)
    occupancy: list[OccupancyIn] = Field(default_factory=list)
    issues: list[IssueIn] = Field(default_factory=list)
    arrears: list[ArrearsIn] = Field(default_factory=list)
    income: list[IncomeIn] = Field(default_factory=list)

    def header_fields(self) -> dict[str, Any]:
        """Return the scalar report fields (no child collections)."""
        return self.model_dump(exclude={"costs", "occupancy", "issues", "arrears", "income"})


def parse_submission(payload: dict[str, Any]) -> ReportSubmission:
    """Validate a raw payload into a ReportSubmission.

    Raises:
        InvalidSubmission: If any field is unknown, missing or out of domain.
    """
    try:
        return ReportSubmission.model_validate(payload)
    except ValidationError as exc:
        raise InvalidSubmission(
            exc.errors(include_url=False, include_context=False, include_input=False)
        ) from exc
