"""
pdf_builder.py — Weekly Report PDF Renderer.

Produces a single-flow A4 report using ReportLab (platypus layout engine):

    Header band      — title, period, submitter, MONTHLY REPORT badge
    Traffic lights   — 52 Old Elvet / FFR Group / Cash Position
    Goals review     — previous goals (achieved or not) and this week's goals
    Cost tables      — maintenance and operational, with totals rows
    Tenant pulse     — complaints, compliments, inspections, safeguarding
    Executive summary
    Compliance grid  — eight statutory checks
    Monthly page     — P&L summary, occupancy trends, 3-month forward look

Each block is preceded by a conditional page break, so a block that would
not fit in the remaining frame height starts on a new page. Long tables
repeat their header row. The "Page X of Y" footer is drawn once all pages
have been laid out.
"""

import logging
from datetime import datetime
from decimal import Decimal
from functools import partial
from pathlib import Path
from typing import Any, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY, TA_LEFT, TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle
from reportlab.lib.units import cm
from reportlab.pdfgen import canvas as rl_canvas
from reportlab.platypus import (
    CondPageBreak,
    PageBreak,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)
from reportlab.platypus.flowables import HRFlowable

from property_reports.metrics import _gbp, cost_totals, split_costs
from property_reports.schemas import TrafficLight
from property_reports.store import ReportBundle

logger = logging.getLogger(__name__)

PAGE_W, PAGE_H = A4
MARGIN = 1.8 * cm
CONTENT_W = PAGE_W - 2 * MARGIN

DEFAULT_BRAND = {
    "primary": "1F3864",
    "secondary": "2E75B6",
    "text": "333333",
    "light": "EEF3F9",
    "green": "27AE60",
    "amber": "F39C12",
    "red": "C0392B",
}

# Minimum remaining frame height (points) before each block is started
_BLOCK_HEIGHTS = {
    "traffic_lights": 3.5 * cm,
    "goals": 5 * cm,
    "cost_table": 4 * cm,
    "pulse": 3.5 * cm,
    "summary": 4 * cm,
    "compliance": 5.5 * cm,
}

COMPLIANCE_ITEMS = [
    ("compliance_gas", "Gas Safety Certificates"),
    ("compliance_electrical", "Electrical Safety (EICR)"),
    ("compliance_epc", "Energy Performance (EPC)"),
    ("compliance_smoke_co", "Smoke & CO Alarms"),
    ("compliance_hmo", "HMO Licensing"),
    ("compliance_insurance", "Landlord Insurance"),
    ("compliance_deposit", "Deposit Protection"),
    ("compliance_right_to_rent", "Right to Rent Checks"),
]


def _hex(h: str):
    """Convert a hex colour string to ReportLab Color."""
    h = h.lstrip("#")
    r, g, b = int(h[0:2], 16), int(h[2:4], 16), int(h[4:6], 16)
    return colors.Color(r / 255, g / 255, b / 255)


def _text(value: Optional[str]) -> str:
    """Escape free text for a Paragraph, keeping line breaks."""
    return escape(value or "").replace("\n", "<br/>")


def _light_colour(status: TrafficLight, brand: dict):
    return _hex(brand[status.value])


# ---------------------------------------------------------------------------
# Stylesheet
# ---------------------------------------------------------------------------

def _build_styles(brand: dict) -> dict[str, ParagraphStyle]:
    """Create all paragraph styles used in the report."""
    primary = _hex(brand["primary"])
    text_col = _hex(brand["text"])
    white = colors.white

    styles = {}
    styles["title"] = ParagraphStyle(
        "title", fontName="Helvetica-Bold", fontSize=18, leading=22,
        textColor=white, alignment=TA_LEFT,
    )
    styles["header_meta"] = ParagraphStyle(
        "header_meta", fontName="Helvetica", fontSize=9, leading=12,
        textColor=colors.Color(0.8, 0.88, 0.95), alignment=TA_LEFT,
    )
    styles["badge"] = ParagraphStyle(
        "badge", fontName="Helvetica-Bold", fontSize=9,
        textColor=white, alignment=TA_RIGHT,
    )
    styles["section_title"] = ParagraphStyle(
        "section_title", fontName="Helvetica-Bold", fontSize=13,
        textColor=primary, spaceBefore=10, spaceAfter=4,
    )
    styles["subsection_title"] = ParagraphStyle(
        "subsection_title", fontName="Helvetica-Bold", fontSize=10.5,
        textColor=primary, spaceBefore=6, spaceAfter=3,
    )
    styles["body"] = ParagraphStyle(
        "body", fontName="Helvetica", fontSize=9.5, leading=14,
        textColor=text_col, spaceAfter=6, alignment=TA_JUSTIFY,
    )
    styles["small"] = ParagraphStyle(
        "small", fontName="Helvetica", fontSize=8.5, leading=11, textColor=text_col,
    )
    styles["muted"] = ParagraphStyle(
        "muted", fontName="Helvetica-Oblique", fontSize=8.5,
        textColor=colors.grey, spaceAfter=4,
    )
    styles["cell"] = ParagraphStyle(
        "cell", fontName="Helvetica", fontSize=8.5, leading=11, textColor=text_col,
    )
    styles["table_header"] = ParagraphStyle(
        "table_header", fontName="Helvetica-Bold", fontSize=8.5,
        textColor=white, alignment=TA_LEFT,
    )
    styles["light_label"] = ParagraphStyle(
        "light_label", fontName="Helvetica", fontSize=8.5,
        textColor=white, alignment=TA_CENTER,
    )
    styles["light_value"] = ParagraphStyle(
        "light_value", fontName="Helvetica-Bold", fontSize=14, leading=18,
        textColor=white, alignment=TA_CENTER,
    )
    styles["kpi_label"] = ParagraphStyle(
        "kpi_label", fontName="Helvetica", fontSize=8,
        textColor=colors.grey, alignment=TA_CENTER,
    )
    styles["kpi_value"] = ParagraphStyle(
        "kpi_value", fontName="Helvetica-Bold", fontSize=15, leading=18,
        textColor=primary, alignment=TA_CENTER,
    )
    return styles


# ---------------------------------------------------------------------------
# Footer canvas
# ---------------------------------------------------------------------------

class NumberedCanvas(rl_canvas.Canvas):
    """Canvas that buffers pages so the footer can show the total page count.

    The final count is appended to `page_counter` when one is given.
    """

    def __init__(self, *args, footer_text: str = "Confidential", brand: Optional[dict] = None,
                 page_counter: Optional[list] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._saved_page_states: list[dict] = []
        self._footer_text = footer_text
        self._brand = brand or DEFAULT_BRAND
        self._page_counter = page_counter

    def showPage(self):
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        total = len(self._saved_page_states)
        if self._page_counter is not None:
            self._page_counter.append(total)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self._draw_footer(total)
            super().showPage()
        super().save()

    def _draw_footer(self, total: int) -> None:
        self.saveState()
        self.setStrokeColor(_hex(self._brand["primary"]))
        self.setLineWidth(0.5)
        self.line(MARGIN, 1.2 * cm, PAGE_W - MARGIN, 1.2 * cm)
        self.setFont("Helvetica", 7.5)
        self.setFillColor(colors.grey)
        self.drawCentredString(
            PAGE_W / 2, 0.7 * cm,
            f"{self._footer_text} | Page {self._pageNumber} of {total}",
        )
        self.restoreState()


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------

def _block_header(bundle: ReportBundle, styles: dict, brand: dict, company: str) -> list:
    """Coloured title band with period and submitter details."""
    report = bundle.report
    submitted = report.submitted_at.strftime("%d %B %Y") if report.submitted_at else "-"
    left = [
        Paragraph(escape(f"{company} Weekly Report"), styles["title"]),
        Paragraph(f"Week ending {report.week_ending.strftime('%d %B %Y')}", styles["header_meta"]),
        Paragraph(
            escape(f"Submitted by {report.submitted_by} on {submitted}"), styles["header_meta"]
        ),
    ]
    badge = Paragraph("MONTHLY REPORT", styles["badge"]) if report.is_monthly else ""
    band = Table([[left, badge]], colWidths=[CONTENT_W * 0.72, CONTENT_W * 0.28])
    band.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, -1), _hex(brand["primary"])),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("LEFTPADDING", (0, 0), (-1, -1), 12),
        ("RIGHTPADDING", (0, 0), (-1, -1), 12),
        ("TOPPADDING", (0, 0), (-1, -1), 10),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 10),
    ]))
    return [band, Spacer(1, 0.4 * cm)]


def _block_traffic_lights(bundle: ReportBundle, styles: dict, brand: dict) -> list:
    report = bundle.report
    panels = [
        ("52 Old Elvet", report.status_52),
        ("FFR Group", report.status_ffr),
        ("Cash Position", report.status_cash),
    ]
    row = [
        [Paragraph(label, styles["light_label"]),
         Paragraph(status.value.upper(), styles["light_value"])]
        for label, status in panels
    ]
    table = Table([row], colWidths=[CONTENT_W / 3] * 3)
    style = [
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("TOPPADDING", (0, 0), (-1, -1), 8),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 8),
        ("LINEAFTER", (0, 0), (1, 0), 2, colors.white),
    ]
    for col, (_, status) in enumerate(panels):
        style.append(("BACKGROUND", (col, 0), (col, 0), _light_colour(status, brand)))
    table.setStyle(TableStyle(style))
    return [
        CondPageBreak(_BLOCK_HEIGHTS["traffic_lights"]),
        Paragraph("Traffic Light Status", styles["section_title"]),
        table,
    ]


def _goal_callout(goal: Optional[str], achieved: bool, note: Optional[str],
                  label: str, styles: dict, brand: dict) -> Table:
    verdict = "ACHIEVED" if achieved else "NOT ACHIEVED"
    hex_code = brand["green"] if achieved else brand["red"]
    colour = _hex(hex_code)
    lines = [
        Paragraph(f"<b>{label}:</b> {_text(goal or 'None set')}", styles["small"]),
        Paragraph(f'<font color="#{hex_code.lstrip("#")}"><b>{verdict}</b></font>', styles["small"]),
    ]
    if note:
        lines.append(Paragraph(f"<i>Note: {_text(note)}</i>", styles["small"]))
    callout = Table([[lines]], colWidths=[CONTENT_W])
    callout.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, -1), _hex(brand["light"])),
        ("LINEBEFORE", (0, 0), (0, -1), 3, colour),
        ("LEFTPADDING", (0, 0), (-1, -1), 8),
        ("TOPPADDING", (0, 0), (-1, -1), 5),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
    ]))
    return callout


def _block_goals(bundle: ReportBundle, styles: dict, brand: dict) -> list:
    report = bundle.report
    story = [
        CondPageBreak(_BLOCK_HEIGHTS["goals"]),
        Paragraph("Goals Review", styles["section_title"]),
        Paragraph("Previous Week", styles["subsection_title"]),
        _goal_callout(report.prev_primary_goal, report.prev_primary_achieved,
                      report.prev_primary_note, "Primary", styles, brand),
        Spacer(1, 0.15 * cm),
        _goal_callout(report.prev_secondary_goal, report.prev_secondary_achieved,
                      report.prev_secondary_note, "Secondary", styles, brand),
        Paragraph("This Week", styles["subsection_title"]),
        Paragraph(f"<b>Primary:</b> {_text(report.primary_goal or 'Not set')}", styles["body"]),
        Paragraph(f"<b>Secondary:</b> {_text(report.secondary_goal or 'Not set')}", styles["body"]),
    ]
    return story


def _cost_table(rows: list, title: str, with_property: bool,
                styles: dict, brand: dict) -> list:
    """One cost table with header row, alternating shading and totals row."""
    story = [
        CondPageBreak(_BLOCK_HEIGHTS["cost_table"]),
        Paragraph(title, styles["subsection_title"]),
    ]
    if not rows:
        story.append(Paragraph(f"No {title.lower()} recorded this week.", styles["muted"]))
        return story

    headers = ["Date", "Property", "Description", "Contractor", "Amount"] if with_property \
        else ["Date", "Description", "Supplier", "Amount"]
    widths = [0.12, 0.2, 0.36, 0.18, 0.14] if with_property else [0.12, 0.5, 0.24, 0.14]

    data = [[Paragraph(h, styles["table_header"]) for h in headers]]
    for cost in rows:
        cells = [cost.cost_date.strftime("%d/%m")]
        if with_property:
            cells.append(Paragraph(_text(cost.property or "General"), styles["cell"]))
        cells += [
            Paragraph(_text(cost.description), styles["cell"]),
            Paragraph(_text(cost.contractor_supplier or "-"), styles["cell"]),
            _gbp(cost.amount),
        ]
        data.append(cells)
    total = sum((c.amount for c in rows), Decimal("0.00"))
    data.append([""] * (len(headers) - 2) + ["Total", _gbp(total)])

    table = Table(data, colWidths=[CONTENT_W * w for w in widths], repeatRows=1)
    style = [
        ("BACKGROUND", (0, 0), (-1, 0), _hex(brand["primary"])),
        ("FONTNAME", (0, 1), (-1, -1), "Helvetica"),
        ("FONTSIZE", (0, 1), (-1, -1), 8.5),
        ("ALIGN", (-1, 0), (-1, -1), "RIGHT"),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.lightgrey),
        ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
        ("LINEABOVE", (0, -1), (-1, -1), 1, _hex(brand["primary"])),
        ("TOPPADDING", (0, 0), (-1, -1), 4),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
    ]
    for i in range(2, len(data) - 1, 2):
        style.append(("BACKGROUND", (0, i), (-1, i), _hex(brand["light"])))
    table.setStyle(TableStyle(style))
    story.append(table)
    return story


def _block_costs(bundle: ReportBundle, styles: dict, brand: dict) -> list:
    maintenance, operational = split_costs(bundle.costs)
    totals = cost_totals(bundle.costs)
    story = [Paragraph("Costs This Week", styles["section_title"])]
    story += _cost_table(maintenance, "Maintenance Costs", True, styles, brand)
    story += _cost_table(operational, "Operational Costs", False, styles, brand)
    story.append(Spacer(1, 0.2 * cm))
    story.append(Paragraph(f"<b>Total spend this week: {_gbp(totals.total)}</b>", styles["body"]))
    return story


def _block_pulse(bundle: ReportBundle, styles: dict, brand: dict) -> list:
    report = bundle.report
    safeguarding = "YES" if report.safeguarding_concerns else "None"
    cells = [
        ("Complaints", str(report.tenant_complaints)),
        ("Compliments", str(report.tenant_compliments)),
        ("Inspections", f"{report.inspections_done}/{report.inspections_scheduled}"),
        ("Safeguarding", safeguarding),
    ]
    strip = Table(
        [[Paragraph(v, styles["kpi_value"]) for _, v in cells],
         [Paragraph(k, styles["kpi_label"]) for k, _ in cells]],
        colWidths=[CONTENT_W / 4] * 4,
    )
    strip.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, -1), _hex(brand["light"])),
        ("LINEAFTER", (0, 0), (2, -1), 1, colors.white),
        ("TOPPADDING", (0, 0), (-1, -1), 6),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
    ]))
    story = [
        CondPageBreak(_BLOCK_HEIGHTS["pulse"]),
        Paragraph("Tenant Pulse", styles["section_title"]),
        strip,
    ]
    if report.tenant_complaints_summary:
        story.append(Spacer(1, 0.15 * cm))
        story.append(Paragraph(
            f"<b>Complaints:</b> {_text(report.tenant_complaints_summary)}", styles["small"]
        ))
    if report.safeguarding_concerns and report.safeguarding_detail:
        story.append(Paragraph(
            f"<b>Safeguarding:</b> {_text(report.safeguarding_detail)}", styles["small"]
        ))
    return story


def _paragraphs(text: str, style) -> list:
    return [Paragraph(_text(p.strip()), style) for p in text.split("\n\n") if p.strip()]


def _block_summary(bundle: ReportBundle, styles: dict) -> list:
    story = [
        CondPageBreak(_BLOCK_HEIGHTS["summary"]),
        Paragraph("Executive Summary", styles["section_title"]),
    ]
    if bundle.report.ai_summary:
        story += _paragraphs(bundle.report.ai_summary, styles["body"])
    else:
        story.append(Paragraph("No summary available.", styles["muted"]))
    return story


def _block_compliance(bundle: ReportBundle, styles: dict, brand: dict) -> list:
    report = bundle.report
    cells = []
    style = [
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("GRID", (0, 0), (-1, -1), 0.4, colors.lightgrey),
        ("FONTSIZE", (0, 0), (-1, -1), 8.5),
        ("FONTNAME", (1, 0), (1, -1), "Helvetica-Bold"),
        ("FONTNAME", (3, 0), (3, -1), "Helvetica-Bold"),
        ("TOPPADDING", (0, 0), (-1, -1), 4),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
    ]
    for idx, (attr, label) in enumerate(COMPLIANCE_ITEMS):
        ok = bool(getattr(report, attr))
        row, col = divmod(idx, 2)
        if col == 0:
            cells.append([])
        cells[row] += [label, "COMPLIANT" if ok else "NON-COMPLIANT"]
        colour = _hex(brand["green"] if ok else brand["red"])
        style.append(("TEXTCOLOR", (col * 2 + 1, row), (col * 2 + 1, row), colour))

    grid = Table(cells, colWidths=[CONTENT_W * 0.3, CONTENT_W * 0.2] * 2)
    grid.setStyle(TableStyle(style))
    story = [
        CondPageBreak(_BLOCK_HEIGHTS["compliance"]),
        Paragraph("Compliance", styles["section_title"]),
        grid,
    ]
    if report.compliance_exceptions:
        story.append(Spacer(1, 0.15 * cm))
        story.append(Paragraph(
            f"<b>Exceptions:</b> {_text(report.compliance_exceptions)}", styles["small"]
        ))
    return story


def _block_monthly(bundle: ReportBundle, styles: dict, brand: dict) -> list:
    report = bundle.report
    sections = [
        ("P&amp;L Summary", report.monthly_pnl_summary),
        ("Occupancy Trends", report.monthly_occupancy_trends),
        ("3-Month Forward Look", report.monthly_forward_look),
    ]
    story = [
        PageBreak(),
        Paragraph(f"Monthly Review: {report.week_ending.strftime('%B %Y')}", styles["section_title"]),
        HRFlowable(width=CONTENT_W, thickness=1, color=_hex(brand["primary"]), spaceAfter=8),
    ]
    for title, text in sections:
        if text:
            story.append(Paragraph(title, styles["subsection_title"]))
            story += _paragraphs(text, styles["body"])
    return story


def _build_story(bundle: ReportBundle, brand: dict, company: str) -> list:
    styles = _build_styles(brand)
    story = []
    story += _block_header(bundle, styles, brand, company)
    story += _block_traffic_lights(bundle, styles, brand)
    story += _block_goals(bundle, styles, brand)
    story += _block_costs(bundle, styles, brand)
    story += _block_pulse(bundle, styles, brand)
    story += _block_summary(bundle, styles)
    story += _block_compliance(bundle, styles, brand)
    if bundle.report.is_monthly:
        story += _block_monthly(bundle, styles, brand)
    return story


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------

def build_pdf(
    bundle: ReportBundle,
    output_path: Path,
    brand: Optional[dict] = None,
    company: str = "Property Portfolio",
    footer: Optional[str] = None,
) -> int:
    """Lay out and write the report PDF.

    Args:
        bundle: Report with its child collections.
        output_path: Destination file.
        brand: Hex colour dict; missing keys fall back to the defaults.
        company: Company name for the title and footer.
        footer: Footer text before the page counter.

    Returns:
        Number of pages written.
    """
    brand = {**DEFAULT_BRAND, **(brand or {})}
    footer = footer or f"{company} | Confidential"

    doc = SimpleDocTemplate(
        str(output_path),
        pagesize=A4,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        topMargin=1.6 * cm,
        bottomMargin=1.8 * cm,
        title=f"{company} Weekly Report {bundle.report.week_ending.isoformat()}",
    )
    pages: list[int] = []
    doc.build(
        _build_story(bundle, brand, company),
        canvasmaker=partial(NumberedCanvas, footer_text=footer, brand=brand, page_counter=pages),
    )
    return pages[-1]


def generate_pdf(bundle: ReportBundle, cfg: dict[str, Any]) -> Path:
    """Render a report into the configured documents directory.

    The filename carries the period and a microsecond timestamp, so an
    existing document is never overwritten.

    Returns:
        Path to the generated PDF file.
    """
    report_cfg = cfg.get("report", {})
    output_dir = Path(cfg.get("paths", {}).get("documents_dir", "data/reports/documents"))
    output_dir.mkdir(parents=True, exist_ok=True)

    stamp = datetime.now().strftime("%Y%m%d%H%M%S%f")
    output_path = output_dir / f"Report_{bundle.report.week_ending.isoformat()}_{stamp}.pdf"
    while output_path.exists():
        stamp = datetime.now().strftime("%Y%m%d%H%M%S%f")
        output_path = output_dir / f"Report_{bundle.report.week_ending.isoformat()}_{stamp}.pdf"

    company = report_cfg.get("company_name", "Property Portfolio")
    pages = build_pdf(
        bundle,
        output_path,
        brand=report_cfg.get("brand"),
        company=company,
        footer=report_cfg.get("footer"),
    )
    logger.info("PDF report saved to %s (%d pages)", output_path, pages)
    return output_path
