"""Progress Tracker — Consistency Engine.

Flags planning patterns that usually indicate a badly set up metric:
- a project tracked by a single metric
- every metric of a project back-loading its planned growth
- planned growth spiking in vacation months
"""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from sqlmodel import Session, select

from tracker.config import settings
from tracker.core.logging import get_logger
from tracker.models.analysis_models import ConsistencyIssue, ConsistencyReport
from tracker.models.tracker_models import Metric, MetricPeriod, Project

logger = get_logger("analyzer.consistency")


def planned_growth(periods: Sequence[MetricPeriod]) -> List[float]:
    """Period-over-period increase of the expected value."""
    growth: List[float] = []
    previous = 0.0
    for p in sorted(periods, key=lambda p: p.reporting_date):
        growth.append(p.expected - previous)
        previous = p.expected
    return growth


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def half_averages(growth: Sequence[float]) -> Tuple[float, float]:
    """Average growth of the first and second half of the plan."""
    half = len(growth) // 2
    return _mean(growth[:half]), _mean(growth[half:])


def is_back_loaded(growth: Sequence[float], ratio: float) -> bool:
    if len(growth) < 2:
        return False
    first, second = half_averages(growth)
    return second > 0 and second > ratio * first


def vacation_spikes(
    periods: Sequence[MetricPeriod],
    vacation_months: Sequence[int],
    ratio: float,
) -> List[dict]:
    """Vacation-month periods whose planned growth outpaces the metric's average."""
    ordered = sorted(periods, key=lambda p: p.reporting_date)
    growth = planned_growth(ordered)
    avg = _mean(growth)
    if avg <= 0:
        return []

    spikes = []
    for p, g in zip(ordered, growth):
        if p.reporting_date.month in vacation_months and g > ratio * avg:
            spikes.append(
                {
                    "date": p.reporting_date.isoformat(),
                    "growth": g,
                    "avg_growth": round(avg, 2),
                }
            )
    return spikes


def project_issues(
    project: Project,
    metrics: Sequence[Tuple[Metric, Sequence[MetricPeriod]]],
    vacation_months: Optional[Sequence[int]] = None,
    vacation_growth_ratio: Optional[float] = None,
    back_loaded_ratio: Optional[float] = None,
) -> List[ConsistencyIssue]:
    """All consistency issues of one project."""
    vacation_months = (
        vacation_months if vacation_months is not None else settings.vacation_months
    )
    vacation_growth_ratio = vacation_growth_ratio or settings.vacation_growth_ratio
    back_loaded_ratio = back_loaded_ratio or settings.back_loaded_ratio

    base = {
        "project_id": project.id,
        "project_name": project.name,
        "pm_name": project.initiative_manager,
    }
    issues: List[ConsistencyIssue] = []

    if len(metrics) == 1:
        issues.append(
            ConsistencyIssue(
                type="single_metric",
                severity="info",
                metric_name=metrics[0][0].name,
                details="Project progress is tracked by a single metric.",
                **base,
            )
        )

    if len(metrics) >= 2:
        rows = []
        for metric, periods in metrics:
            growth = planned_growth(periods)
            if not is_back_loaded(growth, back_loaded_ratio):
                rows = []
                break
            first, second = half_averages(growth)
            rows.append(
                {
                    "metric_name": metric.name,
                    "first_half_avg": round(first, 2),
                    "second_half_avg": round(second, 2),
                }
            )
        if rows:
            issues.append(
                ConsistencyIssue(
                    type="all_back_loaded",
                    severity="warning",
                    details=(
                        f"All {len(rows)} metrics plan most of their growth in the "
                        "second half of the project."
                    ),
                    metrics=rows,
                    **base,
                )
            )

    for metric, periods in metrics:
        spikes = vacation_spikes(periods, vacation_months, vacation_growth_ratio)
        if spikes:
            issues.append(
                ConsistencyIssue(
                    type="vacation_month_growth",
                    severity="high",
                    metric_name=metric.name,
                    details=(
                        f"{len(spikes)} vacation-month period(s) plan more than "
                        f"{vacation_growth_ratio:g}x the average growth."
                    ),
                    periods=spikes,
                    **base,
                )
            )

    return issues


def build_consistency_report(session: Session) -> ConsistencyReport:
    """Run the consistency checks over every project."""
    projects = session.exec(select(Project).order_by(Project.name)).all()
    metrics = session.exec(select(Metric).order_by(Metric.id)).all()
    periods = session.exec(select(MetricPeriod)).all()

    periods_by_metric: Dict[int, List[MetricPeriod]] = defaultdict(list)
    for p in periods:
        periods_by_metric[p.metric_id].append(p)
    metrics_by_project: Dict[int, List[Tuple[Metric, List[MetricPeriod]]]] = defaultdict(list)
    for m in metrics:
        metrics_by_project[m.project_id].append((m, periods_by_metric.get(m.id, [])))

    issues: List[ConsistencyIssue] = []
    for project in projects:
        issues.extend(project_issues(project, metrics_by_project.get(project.id, [])))

    logger.info(f"Consistency report: {len(issues)} issues across {len(projects)} projects")
    return ConsistencyReport(
        generated_at=datetime.now(timezone.utc).isoformat(),
        total_issues=len(issues),
        issues=issues,
    )
