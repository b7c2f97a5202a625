"""
conftest.py — Shared fixtures: file-backed SQLite store, config, payloads and
fake text-generation clients. No test touches the network.
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest
import requests
import yaml

sys.path.insert(0, str(Path(__file__).parent.parent))

from property_reports.db import build_engine, build_session_factory, init_db
from property_reports.narrative import NarrativeGenerator
from property_reports.store import ReportStore

ROOT = Path(__file__).parent.parent
TEMPLATES_FILE = ROOT / "templates" / "prompts.yaml"


# ---------------------------------------------------------------------------
# Fake text-generation clients
# ---------------------------------------------------------------------------

class FakeClient:
    """Returns canned responses in order; an Exception instance is raised instead."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def complete(self, system, prompt, temperature, max_tokens):
        self.calls.append({"system": system, "prompt": prompt,
                           "temperature": temperature, "max_tokens": max_tokens})
        response = self.responses.pop(0) if self.responses else "Generated summary."
        if isinstance(response, Exception):
            raise response
        return response


class FailingClient(FakeClient):
    """Every request times out."""

    def complete(self, system, prompt, temperature, max_tokens):
        self.calls.append({"system": system, "prompt": prompt})
        raise requests.Timeout("read timed out")


class FakeResponse:
    def __init__(self, status_code, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("no JSON")
        return self._body


class FakeSession:
    """Stands in for requests.Session; every POST gets the same response."""

    def __init__(self, response):
        self.response = response
        self.requests = []

    def post(self, url, **kwargs):
        self.requests.append((url, kwargs))
        return self.response


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

def make_payload(**overrides) -> dict:
    """A valid weekly submission; keyword arguments replace top-level keys."""
    payload = {
        "week_ending": "2026-01-23",
        "submitted_by": "Sarah Lee",
        "status_52": "green",
        "status_ffr": "amber",
        "status_cash": "green",
        "primary_goal": "Fill the two remaining voids at Old Elvet",
        "secondary_goal": "Close out boiler repair at Flat 3",
        "prev_primary_goal": "Complete January inspections",
        "prev_primary_achieved": True,
        "prev_secondary_goal": "Chase outstanding deposits",
        "prev_secondary_achieved": False,
        "prev_secondary_note": "Two tenants still to pay",
        "tenant_complaints": 1,
        "tenant_complaints_summary": "Noise complaint at FFR 12",
        "tenant_compliments": 2,
        "inspections_done": 4,
        "inspections_scheduled": 5,
        "costs": [
            {"category": "maintenance", "property": "52 Old Elvet Flat 3",
             "description": "Boiler repair", "contractor_supplier": "Durham Heating",
             "amount": "150.00"},
            {"category": "operational", "description": "Cleaning supplies",
             "contractor_supplier": "Bulk Clean Ltd", "amount": "75.50"},
        ],
        "occupancy": [
            {"portfolio": "52_old_elvet", "total_units": 20, "occupied": 18, "vacant": 2,
             "ending_30_days": 1, "ending_60_days": 3, "viewings_booked": 4,
             "offers_in_progress": 1},
        ],
        "issues": [
            {"property": "52 Old Elvet Flat 3", "issue": "Boiler pressure loss",
             "status": "in_progress", "est_cost": "200.00"},
            {"property": "FFR 12", "issue": "Broken window latch",
             "status": "completed", "completed": True},
        ],
        "arrears": [
            {"tenant_name": "J. Smith", "property": "FFR 7", "amount_owed": "450.00",
             "days_overdue": 21, "escalation_needed": True},
        ],
        "income": [
            {"portfolio": "52_old_elvet", "source": "Rent", "expected": "9000.00",
             "received": "8550.00", "outstanding": "450.00"},
        ],
    }
    payload.update(overrides)
    return payload


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'reports.db'}")
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def clock():
    """Strictly increasing submission timestamps, one minute apart."""
    state = {"now": datetime(2026, 1, 23, 9, 0, 0)}

    def tick():
        state["now"] += timedelta(minutes=1)
        return state["now"]

    return tick


@pytest.fixture
def store(session_factory, clock):
    return ReportStore(session_factory, clock=clock)


@pytest.fixture
def templates():
    with open(TEMPLATES_FILE, "r") as fh:
        return yaml.safe_load(fh)


@pytest.fixture
def cfg(tmp_path):
    return {
        "project": {"name": "property-report-generator", "version": "1.0.0"},
        "paths": {"documents_dir": str(tmp_path / "documents"), "log_dir": str(tmp_path / "logs")},
        "database": {"url": f"sqlite:///{tmp_path / 'cli.db'}"},
        "report": {
            "company_name": "Dragon Student Living",
            "portfolio_description": "a student property portfolio in Durham",
            "footer": "Dragon Student Living | Confidential",
            "brand": {"primary": "1F3864", "green": "27AE60", "amber": "F39C12", "red": "C0392B"},
        },
        "narrative": {
            "temperature": 0.7,
            "weekly_max_tokens": 1000,
            "monthly_max_tokens": 1200,
            "timeout_seconds": 5,
            "max_attempts": 2,
            "templates_file": str(TEMPLATES_FILE),
        },
        "distribution": {"subject_prefix": "Property Report", "smtp_timeout_seconds": 5},
    }


@pytest.fixture
def make_generator(templates, cfg):
    def build(client):
        return NarrativeGenerator(client, templates, cfg["narrative"], cfg["report"])
    return build
