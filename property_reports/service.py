"""
service.py — Submission orchestrator.

Runs the pipeline for one submission, in order:

    validate → persist → weekly narrative → store it
    → monthly narrative (month-end only) → store it
    → render PDF → store PDF path → email

Validation and persistence failures propagate to the caller: nothing has
been stored, or the store could not be trusted. Narrative, render and
delivery failures are logged and reported in the SubmissionResult; the
report stays stored and can be re-rendered or regenerated later.
"""

import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Optional

from property_reports.config import load_env
from property_reports.db import build_engine, build_session_factory, init_db
from property_reports.distributor import DeliveryResult, send_report_email
from property_reports.metrics import is_month_end, week_ending_for
from property_reports.narrative import NarrativeGenerator
from property_reports.pdf_builder import generate_pdf
from property_reports.schemas import parse_submission
from property_reports.store import (
    DashboardSummary,
    MonthlyNarrativeFields,
    ReportBundle,
    ReportStore,
)

logger = logging.getLogger(__name__)


@dataclass
class SubmissionResult:
    report_id: str
    persisted: bool = True
    ai_summary: Optional[str] = None
    narrative_ok: bool = False
    monthly_generated: bool = False
    pdf_path: Optional[str] = None
    rendered: bool = False
    delivered: bool = False
    email_error: Optional[str] = None


class ReportService:
    """Wires the store, narrative generator, renderer and email together."""

    def __init__(
        self,
        store: ReportStore,
        narrator: NarrativeGenerator,
        cfg: dict[str, Any],
        env: Optional[dict[str, str]] = None,
        renderer=generate_pdf,
        sender=send_report_email,
    ) -> None:
        self.store = store
        self.narrator = narrator
        self.cfg = cfg
        self.env = env if env is not None else {}
        self._render = renderer
        self._send = sender

    @classmethod
    def from_config(cls, cfg: dict[str, Any], env: Optional[dict[str, str]] = None) -> "ReportService":
        """Build a service against the configured database, creating tables if needed."""
        env = env if env is not None else load_env()
        url = cfg.get("database", {}).get("url", "sqlite:///data/reports.db")
        if url.startswith("sqlite:///") and url != "sqlite:///:memory:":
            Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        engine = build_engine(url, echo=bool(cfg.get("database", {}).get("echo", False)))
        init_db(engine)
        store = ReportStore(build_session_factory(engine))
        return cls(store, NarrativeGenerator.from_config(cfg, env), cfg, env)

    # ------------------------------------------------------------------
    # Submission pipeline
    # ------------------------------------------------------------------

    def submit(self, payload: dict[str, Any]) -> SubmissionResult:
        """Process one submission end to end.

        Raises:
            InvalidSubmission: The payload failed validation (nothing stored).
            StoreError: The report could not be persisted.
        """
        submission = parse_submission(payload)
        report_id = self.store.create_report(submission)
        result = SubmissionResult(report_id=report_id)
        bundle = self.store.get_report(report_id)

        # Stage 1: Weekly narrative
        try:
            weekly = self.narrator.generate_weekly(bundle)
            self.store.attach_narrative(report_id, ai_summary=weekly.text)
            result.ai_summary = weekly.text
            result.narrative_ok = not weekly.used_fallback
        except Exception as exc:
            logger.error("Narrative stage failed for %s: %s", report_id, exc, exc_info=True)

        # Stage 2: Monthly narrative
        if submission.is_monthly:
            try:
                we = submission.week_ending
                monthly = self.narrator.generate_monthly(
                    bundle.report,
                    self.store.month_costs(we.year, we.month),
                    self.store.month_occupancy(we.year, we.month),
                    self.store.month_income(we.year, we.month),
                )
                self.store.attach_narrative(
                    report_id,
                    monthly=MonthlyNarrativeFields(
                        monthly.pnl_summary, monthly.occupancy_trends, monthly.forward_look
                    ),
                )
                result.monthly_generated = True
            except Exception as exc:
                logger.error("Monthly narrative stage failed for %s: %s", report_id, exc,
                             exc_info=True)

        # Stage 3: PDF
        pdf_path = self._render_and_attach(report_id)
        if pdf_path:
            result.pdf_path = str(pdf_path)
            result.rendered = True

        # Stage 4: Email
        delivery = self._deliver(report_id, pdf_path)
        result.delivered = delivery.delivered
        result.email_error = delivery.error

        logger.info(
            "Submission %s complete -- narrative_ok=%s monthly=%s rendered=%s delivered=%s",
            report_id, result.narrative_ok, result.monthly_generated,
            result.rendered, result.delivered,
        )
        return result

    def _render_and_attach(self, report_id: str) -> Optional[Path]:
        try:
            bundle = self.store.get_report(report_id)
            pdf_path = self._render(bundle, self.cfg)
            self.store.attach_document(report_id, str(pdf_path))
            return pdf_path
        except Exception as exc:
            logger.error("PDF stage failed for %s: %s", report_id, exc, exc_info=True)
            return None

    def _deliver(self, report_id: str, pdf_path: Optional[Path]) -> DeliveryResult:
        try:
            bundle = self.store.get_report(report_id)
            return self._send(bundle.report, pdf_path, bundle.costs, self.cfg, self.env)
        except Exception as exc:
            logger.error("Email stage failed for %s: %s", report_id, exc, exc_info=True)
            return DeliveryResult(delivered=False, error=str(exc))

    # ------------------------------------------------------------------
    # Operations on stored reports
    # ------------------------------------------------------------------

    def regenerate_narrative(self, report_id: str) -> str:
        """Regenerate and store the weekly summary of an existing report.

        Raises:
            ReportNotFound: If no report has this id.
        """
        bundle = self.store.get_report(report_id)
        result = self.narrator.generate_weekly(bundle)
        self.store.attach_narrative(report_id, ai_summary=result.text)
        logger.info("Regenerated narrative for %s (fallback=%s)", report_id, result.used_fallback)
        return result.text

    def get_document(self, report_id: str) -> Path:
        """Return the report's PDF, rendering it only if the stored file is missing.

        Raises:
            ReportNotFound: If no report has this id.
        """
        bundle = self.store.get_report(report_id)
        stored = bundle.report.pdf_path
        if stored and Path(stored).exists():
            return Path(stored)

        pdf_path = self._render(bundle, self.cfg)
        self.store.attach_document(report_id, str(pdf_path))
        return pdf_path

    def get_report(self, report_id: str) -> ReportBundle:
        return self.store.get_report(report_id)

    def list_reports(self) -> list:
        return self.store.list_reports()

    def previous_goals(self) -> dict[str, Any]:
        return self.store.latest_goals()

    def dashboard(self) -> DashboardSummary:
        return self.store.dashboard_summary()

    @staticmethod
    def month_end_check(today: Optional[date] = None) -> dict[str, Any]:
        """Current reporting period and whether it closes the month."""
        week_ending = week_ending_for(today or date.today())
        return {"week_ending": week_ending, "is_month_end": is_month_end(week_ending)}
