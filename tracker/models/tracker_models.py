"""Progress Tracker — Relational Models.

Projects own metrics, metrics own their reporting periods. Every write to
these tables is mirrored into the append-only ``audit_log`` table, which is
the only source for historical (time-travel) views. Audited tables never
reuse ids, so a new record cannot inherit the audit history of a deleted one.
"""

from datetime import date, datetime, timezone
from typing import Optional
from sqlmodel import SQLModel, Field, UniqueConstraint

from tracker.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Project(SQLModel, table=True):
    """A tracked initiative."""

    __tablename__ = "projects"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str = Field(default="")
    initiative_manager: Optional[str] = Field(default=None)
    start_date: Optional[date] = Field(default=None)
    end_date: Optional[date] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Metric(SQLModel, table=True):
    """A tracked quantity with a target curve over time.

    ``final_target`` is the current scope and may change after periods
    exist; each period keeps the target that was in effect when it was
    created.
    """

    __tablename__ = "metrics"
    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_metric_name"),
        {"sqlite_autoincrement": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="projects.id", index=True)
    name: str
    owner: Optional[str] = Field(default=None, description="Owner name or email")
    start_date: date
    end_date: date
    frequency: str = Field(description="weekly | monthly | quarterly")
    progression_type: str = Field(
        default="linear", description="linear | s-curve | exponential | logarithmic"
    )
    final_target: float
    amber_tolerance: float = Field(
        default_factory=lambda: settings.default_amber_tolerance
    )
    red_tolerance: float = Field(default_factory=lambda: settings.default_red_tolerance)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class MetricPeriod(SQLModel, table=True):
    """One reporting interval of a metric: expected vs. actual."""

    __tablename__ = "metric_periods"
    __table_args__ = (
        UniqueConstraint("metric_id", "reporting_date", name="uq_metric_period"),
        {"sqlite_autoincrement": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    metric_id: int = Field(foreign_key="metrics.id", index=True)
    reporting_date: date = Field(index=True)
    expected: float = Field(default=0)
    target: float = Field(default=0, description="Scope in effect for this period")
    complete: float = Field(default=0)
    commentary: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Comment(SQLModel, table=True):
    __tablename__ = "comments"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    period_id: int = Field(foreign_key="metric_periods.id", index=True)
    comment_text: str
    created_by: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)


class Craid(SQLModel, table=True):
    """Challenge / Risk / Action / Issue / Dependency raised on a project."""

    __tablename__ = "craids"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="projects.id", index=True)
    type: str = Field(index=True)
    title: str
    description: str = Field(default="")
    status: str = Field(default="open")
    priority: str = Field(default="medium")
    owner: Optional[str] = Field(default=None)
    period_id: Optional[int] = Field(default=None, foreign_key="metric_periods.id")
    created_by: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ProjectLink(SQLModel, table=True):
    __tablename__ = "project_links"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="projects.id", index=True)
    title: str
    url: str
    created_at: datetime = Field(default_factory=utcnow)


class AuditLogEntry(SQLModel, table=True):
    """Immutable field-level change record.

    Never update or delete rows here; historical views are rebuilt from it.
    """

    __tablename__ = "audit_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(default=None)
    user_email: Optional[str] = Field(default=None)
    action: str = Field(index=True, description="CREATE | UPDATE | DELETE")
    table_name: str = Field(index=True)
    record_id: int = Field(index=True)
    old_values: Optional[str] = Field(default=None, description="JSON field diff")
    new_values: Optional[str] = Field(default=None, description="JSON field diff")
    description: str = Field(default="")
    created_at: datetime = Field(default_factory=utcnow, index=True)
