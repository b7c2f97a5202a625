"""
test_pdf_builder.py — Tests for the ReportLab renderer.

Tests cover:
    - A valid PDF is written and its page count returned
    - Page count grows with cost rows and with the monthly section
    - Free text containing markup characters renders safely
    - Output filenames never collide
"""

import re

import pytest

from conftest import make_payload
from property_reports.pdf_builder import build_pdf, generate_pdf
from property_reports.schemas import parse_submission
from property_reports.store import MonthlyNarrativeFields

SUMMARY = "The portfolio had a steady week.\n\nTwo voids remain at Old Elvet."


def _bundle(store, monthly=False, **overrides):
    report_id = store.create_report(parse_submission(make_payload(is_monthly=monthly, **overrides)))
    store.attach_narrative(
        report_id,
        ai_summary=SUMMARY,
        monthly=MonthlyNarrativeFields("P&L text", "Occupancy text", "Forward text") if monthly else None,
    )
    return store.get_report(report_id)


def _many_costs(n):
    return [
        {"category": "maintenance" if i % 2 else "operational",
         "property": f"FFR {i}", "description": f"Repair job number {i}",
         "contractor_supplier": "Durham Trades", "amount": "42.00"}
        for i in range(n)
    ]


class TestBuildPdf:

    def test_writes_pdf_and_returns_page_count(self, store, tmp_path):
        out = tmp_path / "report.pdf"
        pages = build_pdf(_bundle(store), out, company="Dragon Student Living")
        assert pages >= 1
        assert out.read_bytes().startswith(b"%PDF")

    def test_more_costs_more_pages(self, store, tmp_path):
        short = build_pdf(_bundle(store), tmp_path / "short.pdf")
        long = build_pdf(_bundle(store, costs=_many_costs(120)), tmp_path / "long.pdf")
        assert long > short

    def test_monthly_section_adds_a_page(self, store, tmp_path):
        weekly = build_pdf(_bundle(store), tmp_path / "weekly.pdf")
        monthly = build_pdf(_bundle(store, monthly=True), tmp_path / "monthly.pdf")
        assert monthly == weekly + 1

    def test_bare_weekly_shorter_than_full_monthly(self, store, tmp_path):
        bare = _bundle(store, costs=[], issues=[], arrears=[])
        full = _bundle(store, monthly=True, costs=_many_costs(24))
        assert {c.category.value for c in full.costs} == {"maintenance", "operational"}
        assert full.report.monthly_pnl_summary
        assert build_pdf(bare, tmp_path / "bare.pdf") < build_pdf(full, tmp_path / "full.pdf")

    def test_no_costs_renders(self, store, tmp_path):
        pages = build_pdf(_bundle(store, costs=[]), tmp_path / "empty.pdf")
        assert pages >= 1

    def test_markup_characters_in_free_text(self, store, tmp_path):
        bundle = _bundle(
            store,
            aob="Rent <b>review</b> & <unclosed",
            costs=[{"description": "Pipes & <fittings>", "amount": "9.99"}],
            compliance_gas=False,
            compliance_exceptions="Gas cert <expired> at FFR 3",
        )
        pages = build_pdf(bundle, tmp_path / "markup.pdf")
        assert pages >= 1

    def test_custom_brand_colours(self, store, tmp_path):
        brand = {"primary": "#000000", "green": "00FF00"}
        assert build_pdf(_bundle(store), tmp_path / "brand.pdf", brand=brand) >= 1


class TestGeneratePdf:

    def test_filename_carries_period_and_timestamp(self, store, cfg):
        path = generate_pdf(_bundle(store), cfg)
        assert path.exists()
        assert re.fullmatch(r"Report_2026-01-23_\d{20}\.pdf", path.name)
        assert str(path.parent) == cfg["paths"]["documents_dir"]

    def test_never_overwrites(self, store, cfg):
        bundle = _bundle(store)
        first = generate_pdf(bundle, cfg)
        second = generate_pdf(bundle, cfg)
        assert first != second
        assert first.exists() and second.exists()


@pytest.mark.parametrize("light", ["green", "amber", "red"])
def test_every_traffic_light_colour_renders(store, tmp_path, light):
    bundle = _bundle(store, status_52=light, status_ffr=light, status_cash=light)
    assert build_pdf(bundle, tmp_path / f"{light}.pdf") >= 1
