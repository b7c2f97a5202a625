"""
distributor.py — Report Delivery.

Emails the rendered report to the portfolio owner over SMTP: an HTML body
mirroring the traffic lights, goals, cost breakdown and executive summary,
with the PDF attached.

SMTP credentials and the recipient are read exclusively from environment
variables (.env file). When they are absent the message is logged rather
than sent (dry-run), making local development safe.

Delivery is a single attempt with a connection timeout. Failures are
returned in a DeliveryResult rather than raised; the report is already
stored by the time it is sent.
"""

import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from html import escape
from pathlib import Path
from typing import Any, Iterable, Optional

from property_reports.metrics import cost_totals, split_costs
from property_reports.pdf_builder import DEFAULT_BRAND

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    delivered: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    dry_run: bool = False


def _money(value) -> str:
    return f"&pound;{value:,.2f}"


def build_subject(report, prefix: str = "Property Report") -> str:
    """e.g. 'Property Report: Weekly Report - Week Ending 2026-01-30 | 52OE: GREEN | ...'."""
    kind = "MONTHLY Report" if report.is_monthly else "Weekly Report"
    return (
        f"{prefix}: {kind} - Week Ending {report.week_ending.isoformat()} | "
        f"52OE: {report.status_52.value.upper()} | "
        f"FFR: {report.status_ffr.value.upper()} | "
        f"Cash: {report.status_cash.value.upper()}"
    )


def _cost_rows(rows: list, label: str) -> str:
    if not rows:
        return f'<tr><td colspan="3" style="color:#888;font-style:italic;">No {label} costs</td></tr>'
    html_rows = ""
    for cost in rows:
        html_rows += (
            "<tr>"
            f'<td style="padding:4px 8px;">{escape(cost.property or "General")}</td>'
            f'<td style="padding:4px 8px;">{escape(cost.description or "")}</td>'
            f'<td style="padding:4px 8px;text-align:right;">{_money(cost.amount)}</td>'
            "</tr>"
        )
    return html_rows


def build_email_body(report, costs: Iterable[Any], cfg: dict[str, Any]) -> str:
    """Build the HTML email body.

    Every free-text field is HTML-escaped; the executive summary is
    reproduced verbatim with its paragraph breaks.
    """
    brand = {**DEFAULT_BRAND, **cfg.get("report", {}).get("brand", {})}
    company = escape(cfg.get("report", {}).get("company_name", "Property Portfolio"))
    costs = list(costs)
    maintenance, operational = split_costs(costs)
    totals = cost_totals(costs)

    lights_html = ""
    for label, status in [
        ("52 Old Elvet", report.status_52),
        ("FFR Group", report.status_ffr),
        ("Cash Position", report.status_cash),
    ]:
        lights_html += f"""
        <td style="background:#{brand[status.value]};color:#fff;padding:10px 14px;text-align:center;border-radius:4px;">
            <div style="font-size:10px;opacity:.8;">{label}</div>
            <div style="font-size:18px;font-weight:bold;">{status.value.upper()}</div>
        </td>
        <td style="width:8px;"></td>"""

    def goal_line(goal, achieved, note) -> str:
        verdict = "ACHIEVED" if achieved else "NOT ACHIEVED"
        colour = brand["green"] if achieved else brand["red"]
        line = (f'{escape(goal or "None set")} '
                f'<strong style="color:#{colour};">{verdict}</strong>')
        if note:
            line += f" <em>({escape(note)})</em>"
        return line

    summary_html = "".join(
        f'<p style="font-size:13px;line-height:1.6;">{escape(p.strip()).replace(chr(10), "<br>")}</p>'
        for p in (report.ai_summary or "No summary available.").split("\n\n")
        if p.strip()
    )
    monthly_badge = (
        '<span style="background:#fff;color:#{0};padding:2px 8px;border-radius:3px;'
        'font-size:11px;font-weight:bold;margin-left:8px;">MONTHLY REPORT</span>'.format(brand["primary"])
        if report.is_monthly else ""
    )

    return f"""
    <html><body style="font-family:Arial,sans-serif;color:#2D3748;max-width:700px;margin:auto;">
    <div style="background:#{brand['primary']};padding:24px 28px;border-radius:6px 6px 0 0;">
        <h2 style="color:#fff;margin:0;">{company}{monthly_badge}</h2>
        <p style="color:rgba(255,255,255,.75);margin:4px 0 0;">
            Weekly Report &mdash; Week ending {report.week_ending.strftime('%d %B %Y')} |
            Submitted by {escape(report.submitted_by)}
        </p>
    </div>
    <div style="background:#F4F7FA;padding:20px 28px;">
        <table style="border-spacing:0;"><tr>{lights_html}</tr></table>

        <h3 style="color:#{brand['primary']};">Goals</h3>
        <p style="font-size:13px;">Previous primary: {goal_line(report.prev_primary_goal, report.prev_primary_achieved, report.prev_primary_note)}</p>
        <p style="font-size:13px;">Previous secondary: {goal_line(report.prev_secondary_goal, report.prev_secondary_achieved, report.prev_secondary_note)}</p>
        <p style="font-size:13px;">This week: <strong>{escape(report.primary_goal or "Not set")}</strong>
            / {escape(report.secondary_goal or "Not set")}</p>

        <h3 style="color:#{brand['primary']};">Costs</h3>
        <table style="width:100%;font-size:12px;border-collapse:collapse;">
            <tr><th colspan="3" style="text-align:left;">Maintenance ({_money(totals.maintenance)})</th></tr>
            {_cost_rows(maintenance, "maintenance")}
            <tr><th colspan="3" style="text-align:left;">Operational ({_money(totals.operational)})</th></tr>
            {_cost_rows(operational, "operational")}
            <tr><td colspan="2" style="padding:4px 8px;font-weight:bold;">Total spend</td>
                <td style="padding:4px 8px;text-align:right;font-weight:bold;">{_money(totals.total)}</td></tr>
        </table>

        <h3 style="color:#{brand['primary']};">Executive Summary</h3>
        {summary_html}

        <hr style="border:none;border-top:1px solid #D1D5DB;margin:16px 0;">
        <p style="font-size:11px;color:#888;">
            The full report is attached as a PDF. Generated at
            {datetime.now().strftime('%H:%M on %A %d %B %Y')}.
        </p>
    </div>
    </body></html>"""


def _smtp_port(raw: str) -> int:
    """SMTP_PORT as an int; unset or unparseable values use 587."""
    try:
        return int(raw) if raw.strip() else 587
    except ValueError:
        logger.warning("Invalid SMTP_PORT %r -- using 587", raw)
        return 587


def send_report_email(
    report,
    document_path: Optional[Path],
    costs: Iterable[Any],
    cfg: dict[str, Any],
    env: dict[str, str],
) -> DeliveryResult:
    """Send one report to the owner with its PDF attached.

    Args:
        report: Stored report header.
        document_path: Rendered PDF, attached when it exists.
        costs: The report's cost rows (for the email breakdown).
        cfg: Full configuration dict.
        env: Environment variables (SMTP settings and recipient).

    Returns:
        DeliveryResult; never raises for SMTP or network failures.
    """
    dist_cfg = cfg.get("distribution", {})
    smtp_host = env.get("SMTP_HOST", "")
    smtp_port = _smtp_port(env.get("SMTP_PORT", ""))
    smtp_user = env.get("SMTP_USER", "")
    smtp_password = env.get("SMTP_PASSWORD", "")
    from_addr = env.get("EMAIL_FROM", smtp_user)
    recipient = env.get("OWNER_EMAIL", "")

    subject = build_subject(report, dist_cfg.get("subject_prefix", "Property Report"))

    if not all([smtp_host, smtp_user, smtp_password, recipient]):
        logger.warning(
            "SMTP credentials or OWNER_EMAIL not set -- email dry-run mode.\n"
            "  Subject: %s\n  Recipient: %s\n  Attachment: %s",
            subject,
            recipient or "N/A",
            document_path.name if document_path else "N/A",
        )
        return DeliveryResult(delivered=False, dry_run=True)

    msg = MIMEMultipart("mixed")
    msg["Subject"] = subject
    msg["From"] = formataddr((dist_cfg.get("from_name", ""), from_addr))
    msg["To"] = recipient
    msg["Message-ID"] = make_msgid(domain=from_addr.rsplit("@", 1)[-1] if "@" in from_addr else None)
    msg.attach(MIMEText(build_email_body(report, costs, cfg), "html"))

    if document_path and document_path.exists():
        with open(document_path, "rb") as fh:
            part = MIMEBase("application", "pdf")
            part.set_payload(fh.read())
        encoders.encode_base64(part)
        part.add_header(
            "Content-Disposition",
            f'attachment; filename="{document_path.name}"',
        )
        msg.attach(part)
    elif document_path:
        logger.warning("Attachment %s not found -- sending without it", document_path)

    try:
        with smtplib.SMTP(smtp_host, smtp_port,
                          timeout=float(dist_cfg.get("smtp_timeout_seconds", 30))) as server:
            server.ehlo()
            server.starttls()
            server.login(smtp_user, smtp_password)
            server.sendmail(from_addr, [recipient], msg.as_string())
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("Email delivery failed: %s", exc)
        return DeliveryResult(delivered=False, error=str(exc) or exc.__class__.__name__)

    logger.info("Report email sent to %s (%s)", recipient, msg["Message-ID"])
    return DeliveryResult(delivered=True, message_id=msg["Message-ID"])
