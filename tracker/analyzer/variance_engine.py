"""Progress Tracker — Variance & Status Engine.

Compares expected vs. complete per period and assigns a RAG status
against the metric's amber/red tolerances. Only periods that are due
(reporting date today or earlier) and behind plan can turn amber or red.
"""

from datetime import date, datetime, timezone
from typing import Iterable, List, Optional, Sequence

from tracker.core.logging import get_logger
from tracker.models.analysis_models import (
    MetricStatusReport,
    PeriodStatus,
    PeriodVariance,
    STATUS_SEVERITY,
    StatusSummary,
    VarianceResult,
)
from tracker.models.tracker_models import Metric, MetricPeriod

logger = get_logger("analyzer.variance")

PERCENT_PRECISION = 4


def classify(
    expected: float,
    complete: float,
    amber_tolerance: float,
    red_tolerance: float,
    is_past_or_current: bool,
) -> VarianceResult:
    """Variance, variance percent and status of a single period."""
    variance = complete - expected
    # Multiply before dividing: 5 * 100 / 50 is exactly 10, 5 / 50 * 100 is not
    raw_percent = abs(variance) * 100 / expected if expected > 0 else 0.0

    # Tolerances apply to the unrounded percent; rounding is for display only
    status = PeriodStatus.GREEN
    if is_past_or_current and variance < 0:
        if raw_percent > red_tolerance:
            status = PeriodStatus.RED
        elif raw_percent > amber_tolerance:
            status = PeriodStatus.AMBER

    return VarianceResult(
        variance=variance,
        variance_percent=round(raw_percent, PERCENT_PRECISION),
        status=status,
    )


def _today() -> date:
    return datetime.now(timezone.utc).date()


def classify_periods(
    periods: Sequence[MetricPeriod],
    amber_tolerance: float,
    red_tolerance: float,
    final_target: Optional[float] = None,
    today: Optional[date] = None,
) -> List[PeriodVariance]:
    """Classify every period of a metric, in reporting-date order."""
    today = today or _today()
    results: List[PeriodVariance] = []

    for p in sorted(periods, key=lambda p: p.reporting_date):
        due = p.reporting_date <= today
        v = classify(p.expected, p.complete, amber_tolerance, red_tolerance, due)
        results.append(
            PeriodVariance(
                period_id=p.id,
                reporting_date=p.reporting_date.isoformat(),
                expected=p.expected,
                target=p.target,
                complete=p.complete,
                variance=v.variance,
                variance_percent=v.variance_percent,
                status=v.status,
                is_past_or_current=due,
                scope_changed=final_target is not None and p.target != final_target,
            )
        )
    return results


def summarize(results: Iterable[PeriodVariance]) -> StatusSummary:
    """Status counts, the worst status among due periods and the latest due date."""
    counts = {s.value: 0 for s in PeriodStatus}
    current = PeriodStatus.GREEN
    latest: Optional[str] = None

    for r in results:
        counts[r.status.value] += 1
        if r.is_past_or_current:
            if STATUS_SEVERITY[r.status] > STATUS_SEVERITY[current]:
                current = r.status
            latest = r.reporting_date

    return StatusSummary(counts=counts, current_status=current, latest_reporting_date=latest)


def metric_status_report(
    metric: Metric,
    periods: Sequence[MetricPeriod],
    today: Optional[date] = None,
) -> MetricStatusReport:
    """Full variance report for one metric."""
    results = classify_periods(
        periods,
        metric.amber_tolerance,
        metric.red_tolerance,
        final_target=metric.final_target,
        today=today,
    )
    summary = summarize(results)
    logger.info(
        f"Classified {len(results)} periods for metric {metric.id}: {summary.counts}"
    )
    return MetricStatusReport(
        metric_id=metric.id,
        metric_name=metric.name,
        final_target=metric.final_target,
        amber_tolerance=metric.amber_tolerance,
        red_tolerance=metric.red_tolerance,
        periods=results,
        summary=summary,
    )
