"""Progress Tracker — Progression Engine.

Maps a period index onto a target curve:
linear, s-curve, exponential (J-curve) and logarithmic (front-loaded).
Also lays out the reporting calendar of a metric and persists its periods.
"""

import calendar
import math
from datetime import date, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from sqlmodel import Session

from tracker.config import settings
from tracker.core.audit import Actor, audit_create
from tracker.core.logging import get_logger
from tracker.core.registry import (
    FREQUENCY_MONTHS,
    TABLE_METRIC_PERIODS,
    WEEKLY_DAYS,
    Frequency,
    ProgressionType,
)
from tracker.models.tracker_models import Metric, MetricPeriod

logger = get_logger("analyzer.progression")

S_CURVE_STEEPNESS = 10.0
EXPONENTIAL_RATE = 3.0


def _linear(ratio: float) -> float:
    return ratio


def _s_curve(ratio: float) -> float:
    # Raw logistic: the last period lands near 99.3% of target, not on it
    return 1.0 / (1.0 + math.exp(-S_CURVE_STEEPNESS * (ratio - 0.5)))


def _exponential(ratio: float) -> float:
    return (math.exp(EXPONENTIAL_RATE * ratio) - 1) / (math.exp(EXPONENTIAL_RATE) - 1)


def _logarithmic(ratio: float) -> float:
    return math.sqrt(ratio)


# One fraction-of-target function per curve shape
CURVES: Dict[ProgressionType, Callable[[float], float]] = {
    ProgressionType.LINEAR: _linear,
    ProgressionType.S_CURVE: _s_curve,
    ProgressionType.EXPONENTIAL: _exponential,
    ProgressionType.LOGARITHMIC: _logarithmic,
}


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    if value < 0:
        return -int(math.floor(-value + 0.5))
    return int(math.floor(value + 0.5))


def compute_expected(
    progression_type: "str | ProgressionType",
    final_target: float,
    period_index: int,
    total_periods: int,
) -> int:
    """Expected cumulative value at a 1-based period index.

    ``total_periods`` must be at least 1; callers guarantee it.
    """
    curve = CURVES[ProgressionType.parse(progression_type)]
    ratio = period_index / total_periods
    return round_half_up(final_target * curve(ratio))


def build_expected_curve(
    progression_type: "str | ProgressionType",
    final_target: float,
    total_periods: int,
) -> List[int]:
    """Expected values for period indices 1..total_periods."""
    curve_type = ProgressionType.parse(progression_type)
    return [
        compute_expected(curve_type, final_target, i, total_periods)
        for i in range(1, total_periods + 1)
    ]


# ─────────────────────────────────────────────
# REPORTING CALENDAR
# ─────────────────────────────────────────────


def parse_frequency(value: "str | Frequency") -> Frequency:
    try:
        return Frequency(value)
    except ValueError:
        valid = ", ".join(f.value for f in Frequency)
        raise ValueError(f"Invalid frequency: {value}. Must be one of: {valid}")


def _add_months(d: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's end."""
    year, month_index = divmod(d.month - 1 + months, 12)
    year += d.year
    month = month_index + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _nth_reporting_date(start: date, frequency: Frequency, n: int) -> date:
    if frequency == Frequency.WEEKLY:
        return start + timedelta(days=WEEKLY_DAYS * n)
    # Stepped from the start date so month-end clamping never accumulates
    return _add_months(start, FREQUENCY_MONTHS[frequency] * n)


def reporting_dates(
    start_date: date,
    end_date: date,
    frequency: "str | Frequency",
    max_periods: Optional[int] = None,
) -> List[date]:
    """All reporting dates from start to end (inclusive) at the given frequency."""
    freq = parse_frequency(frequency)
    limit = max_periods if max_periods is not None else settings.max_periods

    dates: List[date] = []
    n = 0
    while True:
        current = _nth_reporting_date(start_date, freq, n)
        if current > end_date:
            break
        dates.append(current)
        if len(dates) > limit:
            raise ValueError(
                "Too many periods to generate. Please check your date range and frequency."
            )
        n += 1
    return dates


def detect_frequency(dates: Sequence[date]) -> Frequency:
    """Guess the reporting frequency from the gap between the first two dates."""
    ordered = sorted(dates)
    if len(ordered) < 2:
        return Frequency.MONTHLY
    gap_days = (ordered[1] - ordered[0]).days
    if gap_days <= 10:
        return Frequency.WEEKLY
    if gap_days >= 80:
        return Frequency.QUARTERLY
    return Frequency.MONTHLY


# ─────────────────────────────────────────────
# PERIOD GENERATION
# ─────────────────────────────────────────────


def generate_metric_periods(
    session: Session,
    metric: Metric,
    actor: Optional[Actor] = None,
) -> List[MetricPeriod]:
    """Create one period per reporting date with expected values from the curve.

    The metric must already be flushed (it needs an id). Does not commit.
    """
    dates = reporting_dates(metric.start_date, metric.end_date, metric.frequency)
    if not dates:
        raise ValueError("Metric date range yields no reporting periods")

    expected_values = build_expected_curve(
        metric.progression_type, metric.final_target, len(dates)
    )

    periods: List[MetricPeriod] = []
    for reporting_date, expected in zip(dates, expected_values):
        period = MetricPeriod(
            metric_id=metric.id,
            reporting_date=reporting_date,
            expected=expected,
            target=metric.final_target,
            complete=0,
        )
        session.add(period)
        periods.append(period)
    session.flush()

    for period in periods:
        audit_create(
            session,
            TABLE_METRIC_PERIODS,
            period,
            actor=actor,
            description=f"Generated period {period.reporting_date} for metric {metric.name}",
        )

    logger.info(
        f"Generated {len(periods)} {metric.frequency} periods for metric {metric.id} "
        f"({metric.progression_type})"
    )
    return periods
