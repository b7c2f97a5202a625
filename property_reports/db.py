"""
db.py — SQLAlchemy tables for reports and their child collections.

One header table (`reports`) plus five child tables keyed by report id.
Status columns are stored through SQLAlchemy Enum types so rows read back
as the closed enumerations declared in schemas.py.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from property_reports.errors import StoreError
from property_reports.schemas import CostCategory, IssueStatus, Portfolio, TrafficLight

convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=convention)


def _enum(enum_cls) -> Enum:
    return Enum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


MONEY = Numeric(12, 2)


class ReportIdPrimaryKey:
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)


class Report(ReportIdPrimaryKey, Base):
    """One weekly (or month-end) submission."""

    __tablename__ = "reports"

    week_ending: Mapped[date] = mapped_column(Date, index=True)
    submitted_by: Mapped[str] = mapped_column(String(120))
    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    is_monthly: Mapped[bool] = mapped_column(Boolean, default=False)

    status_52: Mapped[TrafficLight] = mapped_column(_enum(TrafficLight), default=TrafficLight.GREEN)
    status_ffr: Mapped[TrafficLight] = mapped_column(_enum(TrafficLight), default=TrafficLight.GREEN)
    status_cash: Mapped[TrafficLight] = mapped_column(_enum(TrafficLight), default=TrafficLight.GREEN)

    primary_goal: Mapped[Optional[str]] = mapped_column(Text, default=None)
    secondary_goal: Mapped[Optional[str]] = mapped_column(Text, default=None)
    prev_primary_goal: Mapped[Optional[str]] = mapped_column(Text, default=None)
    prev_primary_achieved: Mapped[bool] = mapped_column(Boolean, default=False)
    prev_primary_note: Mapped[Optional[str]] = mapped_column(Text, default=None)
    prev_secondary_goal: Mapped[Optional[str]] = mapped_column(Text, default=None)
    prev_secondary_achieved: Mapped[bool] = mapped_column(Boolean, default=False)
    prev_secondary_note: Mapped[Optional[str]] = mapped_column(Text, default=None)

    tenant_complaints: Mapped[int] = mapped_column(Integer, default=0)
    tenant_complaints_summary: Mapped[Optional[str]] = mapped_column(Text, default=None)
    tenant_compliments: Mapped[int] = mapped_column(Integer, default=0)
    inspections_done: Mapped[int] = mapped_column(Integer, default=0)
    inspections_scheduled: Mapped[int] = mapped_column(Integer, default=0)
    safeguarding_concerns: Mapped[bool] = mapped_column(Boolean, default=False)
    safeguarding_detail: Mapped[Optional[str]] = mapped_column(Text, default=None)

    compliance_gas: Mapped[bool] = mapped_column(Boolean, default=True)
    compliance_electrical: Mapped[bool] = mapped_column(Boolean, default=True)
    compliance_epc: Mapped[bool] = mapped_column(Boolean, default=True)
    compliance_smoke_co: Mapped[bool] = mapped_column(Boolean, default=True)
    compliance_hmo: Mapped[bool] = mapped_column(Boolean, default=True)
    compliance_insurance: Mapped[bool] = mapped_column(Boolean, default=True)
    compliance_deposit: Mapped[bool] = mapped_column(Boolean, default=True)
    compliance_right_to_rent: Mapped[bool] = mapped_column(Boolean, default=True)
    compliance_exceptions: Mapped[Optional[str]] = mapped_column(Text, default=None)

    future_issues: Mapped[Optional[str]] = mapped_column(Text, default=None)
    aob: Mapped[Optional[str]] = mapped_column(Text, default=None)

    # Derived from the cost rows at insert time
    total_maintenance: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0.00"))
    total_operational: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0.00"))

    ai_summary: Mapped[Optional[str]] = mapped_column(Text, default=None)
    monthly_pnl_summary: Mapped[Optional[str]] = mapped_column(Text, default=None)
    monthly_occupancy_trends: Mapped[Optional[str]] = mapped_column(Text, default=None)
    monthly_forward_look: Mapped[Optional[str]] = mapped_column(Text, default=None)
    pdf_path: Mapped[Optional[str]] = mapped_column(String(500), default=None)


class Cost(ReportIdPrimaryKey, Base):
    __tablename__ = "costs"

    report_id: Mapped[str] = mapped_column(ForeignKey("reports.id"), index=True)
    category: Mapped[CostCategory] = mapped_column(_enum(CostCategory))
    cost_date: Mapped[date] = mapped_column("date", Date)
    property: Mapped[Optional[str]] = mapped_column(String(200), default=None)
    description: Mapped[str] = mapped_column(Text, default="")
    contractor_supplier: Mapped[Optional[str]] = mapped_column(String(200), default=None)
    amount: Mapped[Decimal] = mapped_column(MONEY)
    is_budgeted: Mapped[bool] = mapped_column(Boolean, default=False)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False)
    approved_by: Mapped[Optional[str]] = mapped_column(String(120), default=None)
    notes: Mapped[Optional[str]] = mapped_column(Text, default=None)
    portfolio: Mapped[Portfolio] = mapped_column(_enum(Portfolio), default=Portfolio.OLD_ELVET)


class Occupancy(ReportIdPrimaryKey, Base):
    __tablename__ = "occupancy"

    report_id: Mapped[str] = mapped_column(ForeignKey("reports.id"), index=True)
    portfolio: Mapped[Portfolio] = mapped_column(_enum(Portfolio))
    total_units: Mapped[int] = mapped_column(Integer, default=0)
    occupied: Mapped[int] = mapped_column(Integer, default=0)
    vacant: Mapped[int] = mapped_column(Integer, default=0)
    ending_30_days: Mapped[int] = mapped_column(Integer, default=0)
    ending_60_days: Mapped[int] = mapped_column(Integer, default=0)
    viewings_booked: Mapped[int] = mapped_column(Integer, default=0)
    offers_in_progress: Mapped[int] = mapped_column(Integer, default=0)


class MaintenanceIssue(ReportIdPrimaryKey, Base):
    __tablename__ = "maintenance_issues"

    report_id: Mapped[str] = mapped_column(ForeignKey("reports.id"), index=True)
    property: Mapped[str] = mapped_column(String(200))
    issue: Mapped[str] = mapped_column(Text)
    reported_date: Mapped[Optional[date]] = mapped_column(Date, default=None)
    contractor: Mapped[Optional[str]] = mapped_column(String(200), default=None)
    status: Mapped[IssueStatus] = mapped_column(_enum(IssueStatus), default=IssueStatus.AWAITING_QUOTE)
    eta: Mapped[Optional[str]] = mapped_column(String(60), default=None)
    est_cost: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0.00"))
    actual_cost: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0.00"))
    completed: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, default=None)


class Arrears(ReportIdPrimaryKey, Base):
    __tablename__ = "arrears"

    report_id: Mapped[str] = mapped_column(ForeignKey("reports.id"), index=True)
    tenant_name: Mapped[str] = mapped_column(String(200))
    property: Mapped[str] = mapped_column(String(200))
    amount_owed: Mapped[Decimal] = mapped_column(MONEY)
    days_overdue: Mapped[int] = mapped_column(Integer, default=0)
    action_taken: Mapped[Optional[str]] = mapped_column(Text, default=None)
    escalation_needed: Mapped[bool] = mapped_column(Boolean, default=False)


class Income(ReportIdPrimaryKey, Base):
    __tablename__ = "income"

    report_id: Mapped[str] = mapped_column(ForeignKey("reports.id"), index=True)
    portfolio: Mapped[Portfolio] = mapped_column(_enum(Portfolio))
    source: Mapped[str] = mapped_column(String(200))
    expected: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0.00"))
    received: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0.00"))
    outstanding: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0.00"))
    notes: Mapped[Optional[str]] = mapped_column(Text, default=None)


@event.listens_for(Engine, "connect")
def _sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores FOREIGN KEY clauses unless enabled per connection
    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(database_url: str, echo: bool = False) -> Engine:
    return create_engine(database_url, echo=echo)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create any missing tables."""
    try:
        Base.metadata.create_all(engine)
    except SQLAlchemyError as exc:
        raise StoreError(f"could not initialise database: {exc}") from exc
