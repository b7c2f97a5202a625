"""
property-report-generator — Source package.

Modules:
    schemas      — Submission payload validation (pydantic) and closed enums
    db           — SQLAlchemy tables for reports and their child collections
    store        — Transactional report store and read interfaces
    metrics      — Cost totals, month-end rollup (pandas) and reporting calendar
    narrative    — Hosted text-generation summaries with deterministic fallback
    pdf_builder  — ReportLab PDF: header, traffic lights, costs, compliance, monthly page
    distributor  — Email (SMTP) delivery to the portfolio owner
    service      — Submission orchestrator
    config       — config.yaml and .env loading
    errors       — Domain exceptions
"""
