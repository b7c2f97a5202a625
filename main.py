"""
main.py — Property Report Generator — CLI Entry Point.

Submits weekly reports and serves the stored ones. Every command prints a
JSON document on stdout; logs go to the rotating log file and stderr.

Usage:
    python main.py --submit data/week.json            # store, summarise, render, email
    python main.py --list                             # all reports, newest first
    python main.py --show <id>                        # one report with its child rows
    python main.py --pdf <id>                         # stored PDF (rendered if missing)
    python main.py --regenerate <id>                  # new executive summary
    python main.py --dashboard                        # counts + current-month costs
    python main.py --previous-goals                   # goals to pre-fill next week
    python main.py --is-month-end                     # current period + month-end flag
    python main.py --init-db

Exit codes: 0 success, 1 error, 2 invalid input or unknown report id.
"""

import argparse
import json
import logging
import logging.handlers
import os
import sys
from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INPUT = 2


def _configure_logging(log_dir: str = "logs", level: str = "INFO") -> None:
    """Configure rotating file handler + stream handler.

    Args:
        log_dir: Directory for log files.
        level: Log level string.
    """
    effective_level = os.environ.get("LOG_LEVEL", level).upper()
    numeric = getattr(logging, effective_level, logging.INFO)

    Path(log_dir).mkdir(parents=True, exist_ok=True)
    log_file = Path(log_dir) / f"reports_{datetime.today().strftime('%Y%m%d')}.log"

    fmt = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)-35s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    fh = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=10 * 1024 * 1024, backupCount=7, encoding="utf-8"
    )
    fh.setFormatter(fmt)
    # stdout carries the JSON result
    sh = logging.StreamHandler(sys.stderr)
    sh.setFormatter(fmt)

    root = logging.getLogger()
    root.setLevel(numeric)
    root.addHandler(fh)
    root.addHandler(sh)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="property-reports",
        description="Property Report Generator — weekly and month-end portfolio reports.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --submit week.json
  python main.py --list
  python main.py --pdf 3f0c...
  python main.py --submit week.json --config custom.yaml --log-level DEBUG
        """,
    )
    parser.add_argument("--config", default="config.yaml",
                        help="Path to config.yaml (default: config.yaml)")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    commands = parser.add_argument_group("Commands").add_mutually_exclusive_group(required=True)
    commands.add_argument("--submit", metavar="FILE.json",
                          help="Submit a report payload from a JSON file")
    commands.add_argument("--list", action="store_true", help="List stored reports")
    commands.add_argument("--show", metavar="ID", help="Show one report with its child rows")
    commands.add_argument("--pdf", metavar="ID", help="Return the report PDF, rendering if needed")
    commands.add_argument("--regenerate", metavar="ID",
                          help="Regenerate the executive summary of a report")
    commands.add_argument("--dashboard", action="store_true",
                          help="Report count, latest report and current-month costs")
    commands.add_argument("--previous-goals", action="store_true",
                          help="Goals from the most recent report")
    commands.add_argument("--is-month-end", action="store_true",
                          help="Current reporting period and whether it closes the month")
    commands.add_argument("--init-db", action="store_true", help="Create database tables")
    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# JSON rendering
# ---------------------------------------------------------------------------

def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serialisable")


def _row_dict(row) -> dict[str, Any]:
    """Column values of an ORM row keyed by attribute name."""
    return {attr.key: getattr(row, attr.key) for attr in row.__mapper__.column_attrs}


def _report_summary(report) -> dict[str, Any]:
    return {
        "id": report.id,
        "week_ending": report.week_ending,
        "submitted_by": report.submitted_by,
        "submitted_at": report.submitted_at,
        "is_monthly": report.is_monthly,
        "status_52": report.status_52,
        "status_ffr": report.status_ffr,
        "status_cash": report.status_cash,
        "total_maintenance": report.total_maintenance,
        "total_operational": report.total_operational,
        "pdf_path": report.pdf_path,
    }


def _emit(payload: Any) -> None:
    print(json.dumps(payload, default=_json_default, indent=2))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def run_command(args: argparse.Namespace, cfg: dict[str, Any], logger: logging.Logger) -> int:
    """Execute the requested command.

    Returns:
        Process exit code.
    """
    from property_reports.errors import InvalidSubmission, ReportNotFound, StoreError
    from property_reports.service import ReportService

    if args.is_month_end:
        _emit(ReportService.month_end_check())
        return EXIT_OK

    payload = None
    if args.submit:
        try:
            with open(args.submit, "r") as fh:
                payload = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.error("Could not read input: %s", exc)
            _emit({"error": "bad_input", "detail": str(exc)})
            return EXIT_INPUT

    try:
        service = ReportService.from_config(cfg)
    except (OSError, ValueError, yaml.YAMLError, StoreError) as exc:
        logger.error("Could not set up the report service: %s", exc)
        _emit({"error": "setup", "detail": str(exc)})
        return EXIT_ERROR

    try:
        if args.init_db:
            _emit({"initialised": True, "database": cfg["database"].get("url")})
        elif args.submit:
            _emit(asdict(service.submit(payload)))
        elif args.list:
            _emit([_report_summary(r) for r in service.list_reports()])
        elif args.show:
            bundle = service.get_report(args.show)
            _emit({
                "report": _row_dict(bundle.report),
                "costs": [_row_dict(r) for r in bundle.costs],
                "occupancy": [_row_dict(r) for r in bundle.occupancy],
                "issues": [_row_dict(r) for r in bundle.issues],
                "arrears": [_row_dict(r) for r in bundle.arrears],
                "income": [_row_dict(r) for r in bundle.income],
            })
        elif args.pdf:
            _emit({"report_id": args.pdf, "pdf_path": service.get_document(args.pdf)})
        elif args.regenerate:
            _emit({"report_id": args.regenerate,
                   "ai_summary": service.regenerate_narrative(args.regenerate)})
        elif args.dashboard:
            summary = service.dashboard()
            _emit({
                "total_reports": summary.total_reports,
                "latest_report": (_report_summary(summary.latest_report)
                                  if summary.latest_report else None),
                "month_costs": summary.month_costs,
            })
        elif args.previous_goals:
            _emit(service.previous_goals())
    except InvalidSubmission as exc:
        logger.error("Invalid submission: %d error(s)", len(exc.errors))
        _emit({"error": "invalid_submission", "details": exc.errors})
        return EXIT_INPUT
    except ReportNotFound as exc:
        logger.error("Report not found: %s", exc.report_id)
        _emit({"error": "not_found", "report_id": exc.report_id})
        return EXIT_INPUT
    except StoreError as exc:
        logger.error("Report store failure: %s", exc)
        _emit({"error": "store_error", "detail": str(exc)})
        return EXIT_ERROR
    return EXIT_OK


def main(argv=None) -> None:
    """Parse args, configure logging, and run the command."""
    args = _parse_args(argv)

    from property_reports.config import load_config

    try:
        cfg = load_config(args.config)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(json.dumps({"error": "config", "detail": str(exc)}))
        sys.exit(EXIT_ERROR)

    _configure_logging(log_dir=cfg["paths"].get("log_dir", "logs"), level=args.log_level)
    logger = logging.getLogger(__name__)
    logger.info(
        "Property Report Generator v%s | %s",
        cfg["project"].get("version", "1.0.0"),
        datetime.today().strftime("%Y-%m-%d %H:%M:%S"),
    )
    sys.exit(run_command(args, cfg, logger))


if __name__ == "__main__":
    main()
