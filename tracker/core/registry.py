"""Progress Tracker — Canonical Vocabulary Registry.

Defines the closed sets of values the tracker understands: progression
curves, reporting frequencies, audit actions and CRAID classifications.
Free-text input from the API or from imported workbooks is parsed into
these enums at the boundary so the engines never see raw strings.
"""

from enum import Enum
from typing import Dict

from tracker.core.logging import get_logger

logger = get_logger("core.registry")


class ProgressionType(str, Enum):
    """Shape of a metric's target curve."""

    LINEAR = "linear"
    S_CURVE = "s-curve"
    EXPONENTIAL = "exponential"  # J-curve: slow start, rapid acceleration
    LOGARITHMIC = "logarithmic"  # Front-loaded: fast start, diminishing returns

    @classmethod
    def parse(cls, value: "str | ProgressionType | None") -> "ProgressionType":
        """Parse a curve name; unknown names degrade to linear."""
        if isinstance(value, ProgressionType):
            return value
        key = (value or "").strip().lower()
        if key in PROGRESSION_ALIASES:
            return PROGRESSION_ALIASES[key]
        logger.warning(f"Unknown progression type {value!r}, falling back to linear")
        return cls.LINEAR


PROGRESSION_ALIASES: Dict[str, ProgressionType] = {
    "linear": ProgressionType.LINEAR,
    "s-curve": ProgressionType.S_CURVE,
    "s_curve": ProgressionType.S_CURVE,
    "scurve": ProgressionType.S_CURVE,
    "exponential": ProgressionType.EXPONENTIAL,
    "j-curve": ProgressionType.EXPONENTIAL,
    "logarithmic": ProgressionType.LOGARITHMIC,
}


class Frequency(str, Enum):
    """Reporting interval of a metric."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


# Months advanced per period for calendar-based frequencies
FREQUENCY_MONTHS: Dict[Frequency, int] = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
}
WEEKLY_DAYS = 7


class AuditAction(str, Enum):
    """Kind of change recorded in the audit log."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class CraidType(str, Enum):
    """Challenge / Risk / Action / Issue / Dependency."""

    CHALLENGE = "challenge"
    RISK = "risk"
    ACTION = "action"
    ISSUE = "issue"
    DEPENDENCY = "dependency"


class CraidStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ─────────────────────────────────────────────
# AUDITED TABLES: names written to audit_log.table_name
# ─────────────────────────────────────────────

TABLE_PROJECTS = "projects"
TABLE_METRICS = "metrics"
TABLE_METRIC_PERIODS = "metric_periods"
TABLE_COMMENTS = "comments"
TABLE_CRAIDS = "craids"
TABLE_PROJECT_LINKS = "project_links"

AUDITED_TABLES = {
    TABLE_PROJECTS,
    TABLE_METRICS,
    TABLE_METRIC_PERIODS,
    TABLE_COMMENTS,
    TABLE_CRAIDS,
    TABLE_PROJECT_LINKS,
}
