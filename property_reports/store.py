"""
store.py — Report Store.

Persists a report header plus its five child collections (costs, occupancy,
maintenance issues, arrears, income) and serves the read interfaces used by
the orchestrator and CLI.

The store is an explicit handle built around a SQLAlchemy session factory.
Every public method runs in its own transaction: a report and all of its
children are written together or not at all.
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from property_reports.db import (
    Arrears,
    Cost,
    Income,
    MaintenanceIssue,
    Occupancy,
    Report,
    utcnow,
)
from property_reports.errors import ReportNotFound, StoreError
from property_reports.metrics import cost_totals, month_bounds
from property_reports.schemas import CostCategory, ReportSubmission

logger = logging.getLogger(__name__)


@dataclass
class ReportBundle:
    """A report header with all child collections expanded."""
    report: Report
    costs: list[Cost] = field(default_factory=list)
    occupancy: list[Occupancy] = field(default_factory=list)
    issues: list[MaintenanceIssue] = field(default_factory=list)
    arrears: list[Arrears] = field(default_factory=list)
    income: list[Income] = field(default_factory=list)


@dataclass
class MonthlyNarrativeFields:
    pnl_summary: Optional[str]
    occupancy_trends: Optional[str]
    forward_look: Optional[str]


@dataclass
class DashboardSummary:
    total_reports: int
    latest_report: Optional[Report]
    month_costs: dict[str, Decimal]


_CHILD_MODELS = {
    "costs": Cost,
    "occupancy": Occupancy,
    "issues": MaintenanceIssue,
    "arrears": Arrears,
    "income": Income,
}


class ReportStore:
    """Single-owner handle to the report database."""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            with session.begin():
                yield session
        except SQLAlchemyError as exc:
            logger.error("Report store operation failed: %s", exc)
            raise StoreError(str(exc)) from exc
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_report(self, submission: ReportSubmission) -> str:
        """Insert a report and all of its child rows in one transaction.

        Args:
            submission: Validated submission payload.

        Returns:
            The generated report identifier.
        """
        totals = cost_totals(submission.costs)
        with self._transaction() as session:
            report = Report(
                **submission.header_fields(),
                submitted_at=self._clock(),
                total_maintenance=totals.maintenance,
                total_operational=totals.operational,
            )
            session.add(report)
            session.flush()

            for cost in submission.costs:
                data = cost.model_dump(exclude={"date"})
                session.add(Cost(
                    report_id=report.id,
                    cost_date=cost.date or submission.week_ending,
                    **data,
                ))
            for occ in submission.occupancy:
                session.add(Occupancy(report_id=report.id, **occ.model_dump()))
            for issue in submission.issues:
                session.add(MaintenanceIssue(report_id=report.id, **issue.model_dump()))
            for arrear in submission.arrears:
                session.add(Arrears(report_id=report.id, **arrear.model_dump()))
            for inc in submission.income:
                session.add(Income(report_id=report.id, **inc.model_dump()))
            report_id = report.id

        logger.info(
            "Stored report %s (week ending %s) -- %d costs, %d issues, %d arrears",
            report_id, submission.week_ending, len(submission.costs),
            len(submission.issues), len(submission.arrears),
        )
        return report_id

    def attach_narrative(
        self,
        report_id: str,
        ai_summary: Optional[str] = None,
        monthly: Optional[MonthlyNarrativeFields] = None,
    ) -> None:
        """Store generated narrative text on an existing report."""
        with self._transaction() as session:
            report = self._get_header(session, report_id)
            if ai_summary is not None:
                report.ai_summary = ai_summary
            if monthly is not None:
                report.monthly_pnl_summary = monthly.pnl_summary
                report.monthly_occupancy_trends = monthly.occupancy_trends
                report.monthly_forward_look = monthly.forward_look

    def attach_document(self, report_id: str, pdf_path: str) -> None:
        """Record the path of the rendered PDF for a report."""
        with self._transaction() as session:
            self._get_header(session, report_id).pdf_path = pdf_path

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def _get_header(session: Session, report_id: str) -> Report:
        report = session.get(Report, report_id)
        if report is None:
            raise ReportNotFound(report_id)
        return report

    def get_report(self, report_id: str) -> ReportBundle:
        """Fetch one report with every child collection expanded.

        Raises:
            ReportNotFound: If no report has this id.
        """
        with self._transaction() as session:
            bundle = ReportBundle(report=self._get_header(session, report_id))
            for attr, model in _CHILD_MODELS.items():
                rows = session.scalars(
                    select(model).where(model.report_id == report_id)
                ).all()
                setattr(bundle, attr, list(rows))
            return bundle

    def list_reports(self) -> list[Report]:
        """All reports, newest period first, then most recent submission."""
        with self._transaction() as session:
            return list(session.scalars(
                select(Report).order_by(Report.week_ending.desc(), Report.submitted_at.desc())
            ).all())

    def latest_goals(self) -> dict[str, Any]:
        """Goals from the most recent report, used to pre-fill 'previous goals'."""
        with self._transaction() as session:
            report = session.scalars(
                select(Report)
                .order_by(Report.week_ending.desc(), Report.submitted_at.desc())
                .limit(1)
            ).first()
            if report is None:
                return {"primary_goal": None, "secondary_goal": None, "week_ending": None}
            return {
                "primary_goal": report.primary_goal,
                "secondary_goal": report.secondary_goal,
                "week_ending": report.week_ending,
            }

    def _month_rows(self, model, year: int, month: int) -> list:
        start, end = month_bounds(year, month)
        with self._transaction() as session:
            return list(session.scalars(
                select(model)
                .join(Report, Report.id == model.report_id)
                .where(Report.week_ending >= start, Report.week_ending < end)
                .order_by(Report.week_ending)
            ).all())

    def month_costs(self, year: int, month: int) -> list[Cost]:
        """Cost rows of every report whose period ends in the given month."""
        return self._month_rows(Cost, year, month)

    def month_occupancy(self, year: int, month: int) -> list[Occupancy]:
        return self._month_rows(Occupancy, year, month)

    def month_income(self, year: int, month: int) -> list[Income]:
        return self._month_rows(Income, year, month)

    def dashboard_summary(self, today: Optional[date] = None) -> DashboardSummary:
        """Report count, latest report and current-month cost totals by category."""
        today = today or date.today()
        month_start = today.replace(day=1)
        with self._transaction() as session:
            total = session.scalar(select(func.count(Report.id))) or 0
            latest = session.scalars(
                select(Report)
                .order_by(Report.week_ending.desc(), Report.submitted_at.desc())
                .limit(1)
            ).first()
            # Summed in Python so the totals stay exact Decimals on SQLite
            amounts = session.execute(
                select(Cost.category, Cost.amount).where(Cost.cost_date >= month_start)
            ).all()

        month_costs = {c.value: Decimal("0.00") for c in CostCategory}
        for category, amount in amounts:
            month_costs[category.value] += amount
        return DashboardSummary(total_reports=total, latest_report=latest, month_costs=month_costs)
