"""Progress Tracker — Analysis Output Models."""

from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel


class PeriodStatus(str, Enum):
    """RAG status of a reporting period."""

    GREEN = "green"
    AMBER = "amber"
    RED = "red"


# Severity ordering used when picking the worst status
STATUS_SEVERITY = {PeriodStatus.GREEN: 0, PeriodStatus.AMBER: 1, PeriodStatus.RED: 2}


class VarianceResult(BaseModel):
    """Expected vs. complete for a single period."""

    variance: float
    variance_percent: float
    status: PeriodStatus = PeriodStatus.GREEN


class PeriodVariance(BaseModel):
    """A period row enriched with its variance classification."""

    period_id: Optional[int] = None
    reporting_date: str
    expected: float
    target: float
    complete: float
    variance: float
    variance_percent: float
    status: PeriodStatus
    is_past_or_current: bool
    scope_changed: bool = False


class StatusSummary(BaseModel):
    counts: Dict[str, int] = {}
    current_status: PeriodStatus = PeriodStatus.GREEN
    latest_reporting_date: Optional[str] = None


class MetricStatusReport(BaseModel):
    """Variance classification for every period of a metric."""

    metric_id: int
    metric_name: str
    final_target: float
    amber_tolerance: float
    red_tolerance: float
    periods: List[PeriodVariance] = []
    summary: StatusSummary = StatusSummary()


class ConsistencyIssue(BaseModel):
    """A suspicious planning pattern found by the consistency report."""

    type: str  # "single_metric" | "all_back_loaded" | "vacation_month_growth"
    severity: str  # "info" | "warning" | "high"
    project_id: int
    project_name: str
    pm_name: Optional[str] = None
    metric_name: Optional[str] = None
    details: str = ""
    periods: List[dict] = []
    metrics: List[dict] = []


class ConsistencyReport(BaseModel):
    generated_at: str
    total_issues: int = 0
    issues: List[ConsistencyIssue] = []


class ImportResult(BaseModel):
    """Counts of what an Excel import created or updated."""

    projects_created: int = 0
    projects_updated: int = 0
    metrics_created: int = 0
    periods_created: int = 0
    periods_updated: int = 0
    errors: List[dict] = []
