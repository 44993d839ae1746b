from datetime import date

from tracker.analyzer.variance_engine import (
    classify,
    classify_periods,
    metric_status_report,
    summarize,
)
from tracker.models.analysis_models import PeriodStatus
from tracker.models.tracker_models import Metric, MetricPeriod

TODAY = date(2024, 6, 1)


def _periods(expected, complete, start_month=1, target=100):
    return [
        MetricPeriod(
            id=i + 1,
            metric_id=1,
            reporting_date=date(2024, start_month + i, 1),
            expected=e,
            target=target,
            complete=c,
        )
        for i, (e, c) in enumerate(zip(expected, complete))
    ]


def test_classify_behind_beyond_red():
    result = classify(100, 85, 5, 10, True)
    assert result.variance == -15
    assert result.variance_percent == 15
    assert result.status == PeriodStatus.RED


def test_classify_within_amber():
    result = classify(100, 96, 5, 10, True)
    assert result.variance_percent == 4
    assert result.status == PeriodStatus.GREEN


def test_ahead_of_plan_is_never_flagged():
    result = classify(100, 110, 5, 10, True)
    assert result.variance == 10
    assert result.status == PeriodStatus.GREEN


def test_future_period_is_never_flagged():
    assert classify(100, 0, 5, 10, False).status == PeriodStatus.GREEN


def test_thresholds_are_exclusive():
    assert classify(50, 45, 5, 10, True).status == PeriodStatus.AMBER
    assert classify(100, 95, 5, 10, True).status == PeriodStatus.GREEN


def test_thresholds_compare_unrounded_percent():
    # 10.00001% behind rounds to 10.0 but is still past the red tolerance
    result = classify(1_000_000, 899_999.9, 5, 10, True)
    assert result.status == PeriodStatus.RED
    assert result.variance_percent == 10.0


def test_zero_expected_has_no_percent():
    result = classify(0, 0, 5, 10, True)
    assert result.variance_percent == 0
    assert result.status == PeriodStatus.GREEN


def test_linear_plan_statuses():
    periods = _periods([25, 50, 75, 100], [20, 45, 80, 100])
    results = classify_periods(periods, 5, 10, today=TODAY)
    assert [r.status for r in results] == [
        PeriodStatus.RED,
        PeriodStatus.AMBER,
        PeriodStatus.GREEN,
        PeriodStatus.GREEN,
    ]
    assert [r.variance_percent for r in results] == [20, 10, 6.6667, 0]


def test_classify_periods_sorts_by_date():
    periods = list(reversed(_periods([25, 50], [25, 50])))
    results = classify_periods(periods, 5, 10, today=TODAY)
    assert [r.reporting_date for r in results] == ["2024-01-01", "2024-02-01"]


def test_scope_change_is_flagged_per_period():
    periods = _periods([25, 50], [25, 50], target=100)
    periods[1].target = 120
    results = classify_periods(periods, 5, 10, final_target=120, today=TODAY)
    assert [r.scope_changed for r in results] == [True, False]


def test_summary_reports_worst_due_period():
    periods = _periods([25, 50, 75, 100], [0, 50, 75, 0], start_month=5)
    results = classify_periods(periods, 5, 10, today=TODAY)
    summary = summarize(results)
    # May is red and June green; July and August are still ahead
    assert summary.current_status == PeriodStatus.RED
    assert summary.latest_reporting_date == "2024-06-01"
    assert summary.counts == {"green": 3, "amber": 0, "red": 1}


def test_summary_of_future_periods_only():
    results = classify_periods(_periods([25, 50], [0, 0], start_month=7), 5, 10, today=TODAY)
    summary = summarize(results)
    assert summary.current_status == PeriodStatus.GREEN
    assert summary.latest_reporting_date is None


def test_metric_status_report():
    metric = Metric(
        id=3,
        project_id=1,
        name="Signups",
        start_date=date(2024, 1, 1),
        end_date=date(2024, 4, 1),
        frequency="monthly",
        final_target=100,
        amber_tolerance=5,
        red_tolerance=10,
    )
    report = metric_status_report(
        metric, _periods([25, 50, 75, 100], [20, 45, 80, 100]), today=TODAY
    )
    assert report.metric_id == 3
    assert report.summary.counts == {"green": 2, "amber": 1, "red": 1}
    assert report.summary.current_status == PeriodStatus.RED
