"""
narrative.py — Report Narrative Generator.

Turns a stored report (and, at month end, the month's rollup) into prose by
filling a structured prompt template and sending it to a hosted
text-generation model.

The call policy is explicit:
    1. Each request carries a timeout (narrative.timeout_seconds)
    2. A failed request is retried up to narrative.max_attempts in total
    3. If every attempt fails, a deterministic fallback is assembled from
       locally computed totals, so a report always has some summary text

Templates live in templates/prompts.yaml.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol

import requests
import yaml

from property_reports.metrics import (
    MonthlyRollup,
    _gbp,
    _pct,
    cost_totals,
    monthly_rollup,
    open_issues,
    split_costs,
)
from property_reports.schemas import PORTFOLIO_LABELS, Portfolio
from property_reports.store import ReportBundle

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.openai.com/v1"


class NarrativeServiceError(Exception):
    """The text-generation service returned an error or an unusable response."""


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class NarrativeResult:
    text: str
    used_fallback: bool


@dataclass
class MonthlyNarrative:
    pnl_summary: str
    occupancy_trends: str
    forward_look: str
    used_fallback: bool


class CompletionClient(Protocol):
    def complete(self, system: str, prompt: str, temperature: float, max_tokens: int) -> str:
        ...


# ---------------------------------------------------------------------------
# Text-generation client
# ---------------------------------------------------------------------------

class NarrativeClient:
    """OpenAI-compatible chat-completions client over HTTP."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def complete(self, system: str, prompt: str, temperature: float, max_tokens: int) -> str:
        """Send one chat completion request and return the generated text.

        Raises:
            requests.RequestException: Network failure or timeout.
            NarrativeServiceError: Non-2xx status or malformed body.
        """
        resp = self._session.post(
            f"{self.api_base}/chat/completions",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "model": self.model,
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
            timeout=self.timeout,
        )
        if resp.status_code != 200:
            raise NarrativeServiceError(
                f"text generation returned HTTP {resp.status_code}: {resp.text[:200]}"
            )
        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise NarrativeServiceError(f"malformed completion response: {exc}") from exc
        if not isinstance(content, str):
            raise NarrativeServiceError(
                f"malformed completion response: content is {type(content).__name__}"
            )
        if not content.strip():
            raise NarrativeServiceError("empty completion")
        return content.strip()


def _load_templates(path: str) -> dict[str, Any]:
    with open(Path(path), "r") as fh:
        return yaml.safe_load(fh)


# ---------------------------------------------------------------------------
# Prompt helpers
# ---------------------------------------------------------------------------

def _prev_goal(goal: Optional[str], achieved: bool, note: Optional[str]) -> str:
    text = f'"{goal or "None set"}" - {"ACHIEVED" if achieved else "NOT ACHIEVED"}'
    if note:
        text += f" - Note: {note}"
    return text


def _lines(rows: Iterable[str], empty: str = "  • None") -> str:
    rows = list(rows)
    return "\n".join(rows) if rows else empty


def _maintenance_line(cost) -> str:
    line = f"  • {cost.description} at {cost.property or 'General'}: {_gbp(cost.amount)}"
    if cost.contractor_supplier:
        line += f" ({cost.contractor_supplier})"
    return line


def _operational_line(cost) -> str:
    line = f"  • {cost.description}: {_gbp(cost.amount)}"
    if cost.contractor_supplier:
        line += f" ({cost.contractor_supplier})"
    return line


def _arrears_line(case) -> str:
    line = (
        f"  • {case.tenant_name} at {case.property}: {_gbp(case.amount_owed)} "
        f"({case.days_overdue} days overdue)"
    )
    if case.escalation_needed:
        line += " - ESCALATION NEEDED"
    return line


def _status_label(status) -> str:
    return status.value.replace("_", " ")


def build_weekly_prompt(bundle: ReportBundle, templates: dict, company: dict) -> str:
    """Fill the weekly prompt template from a report bundle."""
    report = bundle.report
    maintenance, operational = split_costs(bundle.costs)
    totals = cost_totals(bundle.costs)
    pending = open_issues(bundle.issues)

    complaints = str(report.tenant_complaints or 0)
    if report.tenant_complaints_summary:
        complaints += f" - {report.tenant_complaints_summary}"
    safeguarding = (
        f"YES - {report.safeguarding_detail or 'no detail given'}"
        if report.safeguarding_concerns else "None"
    )

    return templates["weekly"]["user"].format(
        company=company.get("company_name", "the portfolio"),
        portfolio_description=company.get("portfolio_description", "a student property portfolio"),
        week_ending=report.week_ending.isoformat(),
        status_52=report.status_52.value,
        status_ffr=report.status_ffr.value,
        status_cash=report.status_cash.value,
        prev_primary=_prev_goal(report.prev_primary_goal, report.prev_primary_achieved,
                                report.prev_primary_note),
        prev_secondary=_prev_goal(report.prev_secondary_goal, report.prev_secondary_achieved,
                                  report.prev_secondary_note),
        primary_goal=report.primary_goal or "Not set",
        secondary_goal=report.secondary_goal or "Not set",
        maintenance_total=_gbp(totals.maintenance),
        maintenance_items=totals.maintenance_items,
        maintenance_lines=_lines(_maintenance_line(c) for c in maintenance),
        operational_total=_gbp(totals.operational),
        operational_items=totals.operational_items,
        operational_lines=_lines(_operational_line(c) for c in operational),
        total_spend=_gbp(totals.total),
        complaints=complaints,
        compliments=report.tenant_compliments or 0,
        inspections_done=report.inspections_done or 0,
        inspections_scheduled=report.inspections_scheduled or 0,
        safeguarding=safeguarding,
        open_issue_count=len(pending),
        open_issue_lines=_lines(
            f"  • {i.property}: {i.issue} ({_status_label(i.status)})" for i in pending
        ),
        arrears_count=len(bundle.arrears),
        arrears_lines=_lines(_arrears_line(a) for a in bundle.arrears),
        aob=report.aob or "None",
        future_issues=report.future_issues or "None flagged",
    )


def weekly_fallback(bundle: ReportBundle, templates: dict, reason: str) -> str:
    """Deterministic summary built only from locally computed totals."""
    totals = cost_totals(bundle.costs)
    return templates["weekly"]["fallback"].format(
        reason=reason,
        week_ending=bundle.report.week_ending.isoformat(),
        total_spend=_gbp(totals.total),
        maintenance_total=_gbp(totals.maintenance),
        operational_total=_gbp(totals.operational),
        item_count=totals.items,
        open_issue_count=len(open_issues(bundle.issues)),
        arrears_count=len(bundle.arrears),
    ).strip()


def _occupancy_line(portfolio: str, occ: dict[str, Any]) -> str:
    label = PORTFOLIO_LABELS.get(Portfolio(portfolio), portfolio)
    return (
        f"{label}: {occ['occupied']}/{occ['total_units']} units occupied "
        f"({_pct(occ['occupancy_rate'])}), {occ['vacant']} void, "
        f"{occ['ending_30_days']} tenancies ending within 30 days, "
        f"{occ['viewings_month']} viewings booked this month."
    )


def _rollup_fields(rollup: MonthlyRollup) -> dict[str, Any]:
    return {
        "month_label": rollup.label,
        "cost_items": rollup.cost_items,
        "total_costs": _gbp(rollup.total_costs),
        "maintenance_total": _gbp(rollup.costs_by_category.get("maintenance", 0)),
        "operational_total": _gbp(rollup.costs_by_category.get("operational", 0)),
        "income_expected": _gbp(rollup.income_expected),
        "income_received": _gbp(rollup.income_received),
        "income_outstanding": _gbp(rollup.income_outstanding),
        "net_position": _gbp(rollup.net_position),
    }


def build_monthly_prompt(report, rollup: MonthlyRollup, templates: dict, company: dict) -> str:
    """Fill the month-end prompt template from the month rollup."""
    breakdown = [
        f"- {category.title()}: {_gbp(amount)}"
        for category, amount in rollup.costs_by_category.items()
    ]
    breakdown += [
        f"- {PORTFOLIO_LABELS.get(Portfolio(p), p)}: {_gbp(amount)}"
        for p, amount in rollup.costs_by_portfolio.items()
    ]
    return templates["monthly"]["user"].format(
        company=company.get("company_name", "the portfolio"),
        week_ending=report.week_ending.isoformat(),
        cost_breakdown="\n".join(breakdown),
        occupancy_lines=_lines(
            (f"- {_occupancy_line(p, occ)}" for p, occ in rollup.occupancy.items()),
            empty="- No snapshots recorded",
        ),
        **_rollup_fields(rollup),
    )


def monthly_fallback(rollup: MonthlyRollup, templates: dict, reason: str) -> MonthlyNarrative:
    """Deterministic three-section month-end summary from the rollup."""
    tmpl = templates["monthly"]
    fields = _rollup_fields(rollup)

    if rollup.occupancy:
        occupancy = " ".join(_occupancy_line(p, occ) for p, occ in rollup.occupancy.items())
    else:
        occupancy = tmpl["fallback_occupancy_empty"].format(**fields).strip()

    snapshots = rollup.occupancy.values()
    forward = tmpl["fallback_forward"].format(
        ending_30=sum(o["ending_30_days"] for o in snapshots),
        ending_60=sum(o["ending_60_days"] for o in snapshots),
        offers=sum(o["offers_in_progress"] for o in snapshots),
        **fields,
    ).strip()

    return MonthlyNarrative(
        pnl_summary=tmpl["fallback_pnl"].format(reason=reason, **fields).strip(),
        occupancy_trends=occupancy,
        forward_look=forward,
        used_fallback=True,
    )


_HEADINGS = (
    ("pnl", re.compile(r"^(\d+[.)]\s*)?(MONTHLY\s+)?P\s*&\s*L(\s+SUMMARY)?\s*:?$", re.IGNORECASE)),
    ("occupancy", re.compile(r"^(\d+[.)]\s*)?OCCUPANCY\s+TRENDS?\s*:?$", re.IGNORECASE)),
    ("forward", re.compile(r"^(\d+[.)]\s*)?(3|THREE)[\s-]+MONTH\s+FORWARD[\s-]+LOOK\s*:?$",
                           re.IGNORECASE)),
)


def split_monthly_sections(text: str) -> dict[str, str]:
    """Split a month-end response on its three section headings.

    A heading is a line naming the section on its own, optionally numbered
    or wrapped in markdown emphasis. Without recognisable headings the whole
    response is treated as the P&L section.
    """
    sections: dict[str, list[str]] = {}
    current = None
    for line in text.splitlines():
        bare = line.strip().strip("#*_ ").strip()
        key = next((name for name, pattern in _HEADINGS if pattern.match(bare)), None)
        if key:
            current = key
            sections.setdefault(key, [])
            continue
        if current:
            sections[current].append(line)

    if not sections:
        return {"pnl": text.strip(), "occupancy": "", "forward": ""}
    return {name: "\n".join(sections.get(name, [])).strip() for name, _ in _HEADINGS}


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class NarrativeGenerator:
    """Weekly and month-end narrative generation with fallback."""

    def __init__(
        self,
        client: Optional[CompletionClient],
        templates: dict[str, Any],
        settings: Optional[dict[str, Any]] = None,
        company: Optional[dict[str, Any]] = None,
    ) -> None:
        settings = settings or {}
        self.client = client
        self.templates = templates
        self.company = company or {}
        self.temperature = float(settings.get("temperature", 0.7))
        self.weekly_max_tokens = int(settings.get("weekly_max_tokens", 1000))
        self.monthly_max_tokens = int(settings.get("monthly_max_tokens", 1200))
        self.max_attempts = max(1, int(settings.get("max_attempts", 2)))

    @classmethod
    def from_config(cls, cfg: dict[str, Any], env: dict[str, str]) -> "NarrativeGenerator":
        """Build a generator from config.yaml settings and environment secrets.

        Without OPENAI_API_KEY the generator runs in fallback-only mode.
        """
        settings = cfg.get("narrative", {})
        templates = _load_templates(settings.get("templates_file", "templates/prompts.yaml"))
        api_key = env.get("OPENAI_API_KEY", "").strip()
        client = None
        if api_key:
            client = NarrativeClient(
                api_key=api_key,
                model=settings.get("model", "gpt-4o"),
                api_base=env.get("OPENAI_API_BASE") or settings.get("api_base", DEFAULT_API_BASE),
                timeout=float(settings.get("timeout_seconds", 30)),
            )
        else:
            logger.warning("OPENAI_API_KEY not set -- narratives will use fallback text")
        return cls(client, templates, settings, cfg.get("report", {}))

    def _complete(self, system: str, prompt: str, max_tokens: int) -> tuple[Optional[str], str]:
        """Run the request policy. Returns (text, reason); text is None on failure."""
        if self.client is None:
            return None, "no text-generation API key configured"

        reason = "unknown error"
        for attempt in range(1, self.max_attempts + 1):
            try:
                text = self.client.complete(system, prompt, self.temperature, max_tokens)
                if not isinstance(text, str) or not text.strip():
                    raise NarrativeServiceError("empty or non-text completion")
                logger.info("Narrative generated (attempt %d) -- %d chars", attempt, len(text))
                return text, ""
            except Exception as exc:  # any client failure routes to the fallback
                reason = str(exc) or exc.__class__.__name__
                logger.warning("Narrative request failed (attempt %d/%d): %s",
                               attempt, self.max_attempts, reason)
        logger.error("Narrative generation failed after %d attempts -- using fallback",
                     self.max_attempts)
        return None, reason

    def generate_weekly(self, bundle: ReportBundle) -> NarrativeResult:
        """Executive summary for one weekly report; never empty."""
        prompt = build_weekly_prompt(bundle, self.templates, self.company)
        text, reason = self._complete(
            self.templates["weekly"]["system"].strip(), prompt, self.weekly_max_tokens
        )
        if text:
            return NarrativeResult(text=text, used_fallback=False)
        return NarrativeResult(
            text=weekly_fallback(bundle, self.templates, reason), used_fallback=True
        )

    def generate_monthly(
        self,
        report,
        month_costs: Iterable[Any],
        month_occupancy: Iterable[Any],
        month_income: Iterable[Any] = (),
    ) -> MonthlyNarrative:
        """Three-section month-end summary for the month the report closes."""
        week_ending = report.week_ending
        rollup = monthly_rollup(
            week_ending.year, week_ending.month, month_costs, month_occupancy, month_income
        )
        prompt = build_monthly_prompt(report, rollup, self.templates, self.company)
        text, reason = self._complete(
            self.templates["monthly"]["system"].strip(), prompt, self.monthly_max_tokens
        )
        if not text:
            return monthly_fallback(rollup, self.templates, reason)

        sections = split_monthly_sections(text)
        fallback = monthly_fallback(rollup, self.templates, "section missing from response")
        return MonthlyNarrative(
            pnl_summary=sections["pnl"] or fallback.pnl_summary,
            occupancy_trends=sections["occupancy"] or fallback.occupancy_trends,
            forward_look=sections["forward"] or fallback.forward_look,
            used_fallback=False,
        )
