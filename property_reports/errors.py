"""
errors.py — Domain exceptions raised across the report pipeline.

Only validation, persistence and lookup failures propagate to callers.
Narrative and delivery failures are recovered locally and reported back
as result objects (see narrative.NarrativeResult, distributor.DeliveryResult).
"""


class ReportError(Exception):
    """Base class for property report errors."""


class InvalidSubmission(ReportError, ValueError):
    """Submission payload failed validation at the boundary."""

    def __init__(self, errors: list[dict]):
        self.errors = errors
        fields = ", ".join(
            ".".join(str(p) for p in err.get("loc", ())) or "<root>" for err in errors
        )
        super().__init__(f"Invalid report submission ({len(errors)} errors): {fields}")


class StoreError(ReportError):
    """The report store could not complete a read or write."""


class ReportNotFound(ReportError, LookupError):
    """No report exists with the requested identifier."""

    def __init__(self, report_id: str):
        self.report_id = report_id
        super().__init__(f"Report not found: {report_id}")
