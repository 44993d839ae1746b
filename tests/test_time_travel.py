import json
from datetime import datetime, timedelta, timezone

import pytest

from tracker.analyzer.time_travel import (
    MISSING,
    AuditLogCorruptError,
    reconstruct_record_at,
    project_data_at,
    reconstruct_state_at,
    snapshot_points,
    to_delta,
)
from tracker.core.audit import parse_timestamp, record_audit
from tracker.models.tracker_models import AuditLogEntry, Metric, MetricPeriod, Project

T0 = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


def _at(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


def _entry(entry_id, action, minutes, old=None, new=None, record_id=1):
    return AuditLogEntry(
        id=entry_id,
        action=action,
        table_name="metric_periods",
        record_id=record_id,
        old_values=json.dumps(old) if old is not None else None,
        new_values=json.dumps(new) if new is not None else None,
        created_at=_at(minutes),
    )


CREATED = {"id": 1, "metric_id": 1, "expected": 25, "complete": 0, "commentary": None}

HISTORY = [
    _entry(1, "CREATE", 0, new=CREATED),
    _entry(2, "UPDATE", 10, old={"complete": 0}, new={"complete": 10}),
    _entry(3, "UPDATE", 20, old={"complete": 10}, new={"complete": 30}),
    _entry(4, "UPDATE", 30, old={"commentary": None, "complete": 30},
           new={"commentary": "late", "complete": 50}),
]

LIVE = {**CREATED, "complete": 50, "commentary": "late"}


def test_now_equals_live_state():
    assert reconstruct_state_at(LIVE, HISTORY, _at(60)) == LIVE


def test_before_creation_is_absent():
    assert reconstruct_state_at(LIVE, HISTORY, _at(-1)) is None


def test_entry_at_timestamp_is_included():
    assert reconstruct_state_at(LIVE, HISTORY, _at(10))["complete"] == 10


def test_multiple_edits_unwind_in_order():
    assert reconstruct_state_at(LIVE, HISTORY, _at(15))["complete"] == 10
    assert reconstruct_state_at(LIVE, HISTORY, _at(5))["complete"] == 0
    state = reconstruct_state_at(LIVE, HISTORY, _at(25))
    assert state["complete"] == 30
    assert state["commentary"] is None


def test_sparse_diff_leaves_other_fields():
    live = {"id": 1, "expected": 25, "complete": 50, "commentary": "keep"}
    history = [_entry(9, "UPDATE", 10, old={"complete": 20}, new={"complete": 50})]
    state = reconstruct_state_at(live, history, _at(5))
    assert state == {"id": 1, "expected": 25, "complete": 20, "commentary": "keep"}


def test_entry_order_does_not_matter():
    shuffled = [HISTORY[2], HISTORY[0], HISTORY[3], HISTORY[1]]
    assert reconstruct_state_at(LIVE, shuffled, _at(15)) == reconstruct_state_at(
        LIVE, HISTORY, _at(15)
    )


def test_reconstruction_is_idempotent_and_pure():
    live = dict(LIVE)
    first = reconstruct_state_at(live, HISTORY, _at(15))
    second = reconstruct_state_at(live, HISTORY, _at(15))
    assert first == second
    assert live == LIVE


def test_deleted_record_comes_back():
    history = HISTORY + [_entry(5, "DELETE", 40, old=LIVE)]
    assert reconstruct_state_at(None, history, _at(35)) == LIVE
    assert reconstruct_state_at(None, history, _at(15))["complete"] == 10
    assert reconstruct_state_at(None, history, _at(45)) is None


def test_no_history_means_no_change():
    assert reconstruct_state_at(LIVE, [], _at(-100)) == LIVE


def test_malformed_json_fails_loudly():
    broken = AuditLogEntry(
        id=77,
        action="UPDATE",
        table_name="metric_periods",
        record_id=1,
        old_values="{not json",
        new_values="{}",
        created_at=_at(50),
    )
    with pytest.raises(AuditLogCorruptError) as excinfo:
        reconstruct_state_at(LIVE, HISTORY + [broken], _at(15))
    assert excinfo.value.entry_id == 77


def test_unknown_action_fails_loudly():
    with pytest.raises(AuditLogCorruptError):
        to_delta(_entry(8, "MERGE", 0, new={}))


def test_delta_marks_missing_sides():
    delta = to_delta(HISTORY[0])
    assert all(c.old_value is MISSING for c in delta.changes)
    assert delta.new_values() == CREATED


def test_naive_sqlite_timestamps_are_utc():
    entry = _entry(1, "CREATE", 0, new=CREATED)
    entry.created_at = entry.created_at.replace(tzinfo=None)
    assert reconstruct_state_at(LIVE, [entry], _at(-1)) is None


def test_parse_timestamp():
    assert parse_timestamp("2024-01-01T09:00:00Z") == T0
    assert parse_timestamp("2024-01-01T09:00:00") == T0
    with pytest.raises(ValueError):
        parse_timestamp("yesterday")


# ── Against the database ──


def _seed(session):
    project = Project(name="Hist")
    session.add(project)
    session.flush()
    metric = Metric(
        project_id=project.id,
        name="Leads",
        start_date=_at(0).date(),
        end_date=_at(0).date(),
        frequency="monthly",
        final_target=10,
    )
    session.add(metric)
    session.flush()
    period = MetricPeriod(
        metric_id=metric.id, reporting_date=_at(0).date(), expected=10, target=10, complete=7
    )
    session.add(period)
    session.flush()
    return project, metric, period


def _backdate(entry, minutes):
    entry.created_at = _at(minutes)
    return entry


def test_reconstruct_record_from_database(session):
    project, metric, period = _seed(session)
    _backdate(
        record_audit(
            session, "CREATE", "metric_periods", period.id,
            new_values={"id": period.id, "metric_id": metric.id, "complete": 0},
        ),
        0,
    )
    _backdate(
        record_audit(
            session, "UPDATE", "metric_periods", period.id,
            old_values={"complete": 0}, new_values={"complete": 7},
        ),
        10,
    )
    session.commit()

    assert reconstruct_record_at(session, "metric_periods", period.id, _at(5))["complete"] == 0
    assert reconstruct_record_at(session, "metric_periods", period.id, _at(15))["complete"] == 7
    assert reconstruct_record_at(session, "metric_periods", period.id, _at(-5)) is None


def test_snapshot_points_are_distinct_and_ascending(session):
    project, metric, period = _seed(session)
    for minutes, complete in [(20, 5), (10, 3), (20, 5)]:
        _backdate(
            record_audit(
                session, "CREATE" if minutes == 10 else "UPDATE", "metric_periods", period.id,
                old_values={"complete": 0}, new_values={"metric_id": metric.id, "complete": complete},
            ),
            minutes,
        )
    session.commit()

    points = snapshot_points(session, project.id)
    assert points == [_at(10).isoformat(), _at(20).isoformat()]


def test_snapshot_points_reject_unknown_table(session):
    project, _, _ = _seed(session)
    with pytest.raises(ValueError):
        snapshot_points(session, project.id, "users")


def test_history_of_a_reused_id_stays_with_its_old_project(session):
    project, metric, period = _seed(session)
    foreign = {"id": period.id, "metric_id": 999, "reporting_date": "2023-01-01", "expected": 1}
    mine = {"id": period.id, "metric_id": metric.id, "reporting_date": "2024-01-01", "expected": 10}
    _backdate(record_audit(session, "CREATE", "metric_periods", period.id, new_values=foreign), 0)
    _backdate(record_audit(session, "DELETE", "metric_periods", period.id, old_values=foreign), 10)
    _backdate(record_audit(session, "CREATE", "metric_periods", period.id, new_values=mine), 20)
    _backdate(
        record_audit(
            session, "CREATE", "metrics", metric.id,
            new_values={"id": metric.id, "project_id": project.id, "name": "Leads"},
        ),
        20,
    )
    session.commit()

    assert project_data_at(session, project.id, _at(5)) == []
    rows = project_data_at(session, project.id, _at(25))
    assert [(r["id"], r["metric"]) for r in rows] == [(period.id, "Leads")]
    assert snapshot_points(session, project.id) == [_at(20).isoformat()]
