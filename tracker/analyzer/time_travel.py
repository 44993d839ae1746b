"""Progress Tracker — Time-Travel Engine.

Rebuilds the state of a record as of a past timestamp by undoing audit log
entries from the present backwards. Nothing is persisted: snapshots are
computed on demand from the immutable ``audit_log`` table.

Replay rules, newest entry first, stopping at the first entry recorded at
or before the requested timestamp:

- UPDATE: every field with a recorded old value is set back to it.
  Fields without an old value are left alone (sparse diffs).
- DELETE: the record existed before; its last known values come back.
- CREATE: the record did not exist before; the result is ``None``.
"""

import json
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Set, Union

from sqlmodel import Session, SQLModel, select

from tracker.core.audit import as_utc, format_timestamp, row_values
from tracker.core.logging import get_logger
from tracker.core.registry import (
    TABLE_COMMENTS,
    TABLE_CRAIDS,
    TABLE_METRIC_PERIODS,
    TABLE_METRICS,
    TABLE_PROJECT_LINKS,
    TABLE_PROJECTS,
    AuditAction,
)
from tracker.models.tracker_models import (
    AuditLogEntry,
    Comment,
    Craid,
    Metric,
    MetricPeriod,
    Project,
    ProjectLink,
)

logger = get_logger("analyzer.time_travel")

TABLE_MODELS: Dict[str, type] = {
    TABLE_PROJECTS: Project,
    TABLE_METRICS: Metric,
    TABLE_METRIC_PERIODS: MetricPeriod,
    TABLE_COMMENTS: Comment,
    TABLE_CRAIDS: Craid,
    TABLE_PROJECT_LINKS: ProjectLink,
}


class AuditLogCorruptError(Exception):
    """Raised when an audit row cannot be decoded. Never silently skipped."""

    def __init__(self, message: str, entry_id: Optional[int] = None):
        self.entry_id = entry_id
        super().__init__(message)


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


class FieldChange(NamedTuple):
    """One field of an audit diff; either side may be ``MISSING``."""

    field: str
    old_value: Any
    new_value: Any


@dataclass(frozen=True)
class AuditDelta:
    """A decoded audit row."""

    entry_id: Optional[int]
    action: AuditAction
    table_name: str
    record_id: int
    created_at: datetime
    changes: tuple

    def old_values(self) -> Dict[str, Any]:
        return {c.field: c.old_value for c in self.changes if c.old_value is not MISSING}

    def new_values(self) -> Dict[str, Any]:
        return {c.field: c.new_value for c in self.changes if c.new_value is not MISSING}

    def values(self) -> Dict[str, Any]:
        """Every value this entry mentions, new side winning."""
        merged = self.old_values()
        merged.update(self.new_values())
        return merged


def _decode(raw: Optional[str], entry_id: Optional[int], column: str) -> Dict[str, Any]:
    if raw is None or raw == "":
        return {}
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise AuditLogCorruptError(
            f"Audit entry {entry_id} has malformed {column}: {e}", entry_id=entry_id
        )
    if decoded is None:
        return {}
    if not isinstance(decoded, dict):
        raise AuditLogCorruptError(
            f"Audit entry {entry_id} {column} is not a JSON object", entry_id=entry_id
        )
    return decoded


def to_delta(entry: AuditLogEntry) -> AuditDelta:
    """Decode an audit row into typed field changes."""
    try:
        action = AuditAction(entry.action)
    except ValueError:
        raise AuditLogCorruptError(
            f"Audit entry {entry.id} has unknown action {entry.action!r}",
            entry_id=entry.id,
        )
    old = _decode(entry.old_values, entry.id, "old_values")
    new = _decode(entry.new_values, entry.id, "new_values")
    changes = tuple(
        FieldChange(field, old.get(field, MISSING), new.get(field, MISSING))
        for field in sorted(set(old) | set(new))
    )
    return AuditDelta(
        entry_id=entry.id,
        action=action,
        table_name=entry.table_name,
        record_id=entry.record_id,
        created_at=as_utc(entry.created_at),
        changes=changes,
    )


def _chronological_key(delta: AuditDelta):
    return (delta.created_at, delta.entry_id or 0)


def reconstruct_state_at(
    current_state: Optional[Dict[str, Any]],
    entries: Iterable[Union[AuditLogEntry, AuditDelta]],
    timestamp: datetime,
) -> Optional[Dict[str, Any]]:
    """State of one record at ``timestamp``; ``None`` if it did not exist.

    ``entries`` are that record's audit rows in any order.
    """
    when = as_utc(timestamp)
    deltas = [e if isinstance(e, AuditDelta) else to_delta(e) for e in entries]
    deltas.sort(key=_chronological_key, reverse=True)

    state = dict(current_state) if current_state is not None else None

    for delta in deltas:
        if delta.created_at <= when:
            break
        if delta.action == AuditAction.CREATE:
            state = None
        elif delta.action == AuditAction.DELETE:
            state = delta.old_values()
        else:
            if state is None:
                # Gone without a DELETE row: start from the last known values
                state = delta.new_values()
            for change in delta.changes:
                if change.old_value is not MISSING:
                    state[change.field] = change.old_value

    return state


# ─────────────────────────────────────────────
# DATABASE-BACKED RECONSTRUCTION
# ─────────────────────────────────────────────


def current_state(
    session: Session, table_name: str, record_id: int
) -> Optional[Dict[str, Any]]:
    """Live values of a record, or None if it no longer exists."""
    model = TABLE_MODELS.get(table_name)
    if model is None:
        raise ValueError(f"Table {table_name!r} is not audited")
    row: Optional[SQLModel] = session.get(model, record_id)
    return row_values(row) if row is not None else None


def _entries_by_record(
    session: Session, table_name: str, record_ids: Optional[Set[int]] = None
) -> Dict[int, List[AuditDelta]]:
    query = select(AuditLogEntry).where(AuditLogEntry.table_name == table_name)
    if record_ids is not None:
        if not record_ids:
            return {}
        query = query.where(AuditLogEntry.record_id.in_(record_ids))  # type: ignore
    grouped: Dict[int, List[AuditDelta]] = defaultdict(list)
    for entry in session.exec(query).all():
        grouped[entry.record_id].append(to_delta(entry))
    return grouped


def reconstruct_record_at(
    session: Session, table_name: str, record_id: int, timestamp: datetime
) -> Optional[Dict[str, Any]]:
    """State of a stored record as of ``timestamp``."""
    live = current_state(session, table_name, record_id)
    entries = _entries_by_record(session, table_name, {record_id}).get(record_id, [])
    return reconstruct_state_at(live, entries, timestamp)


def _project_metric_ids(session: Session, project_id: int) -> Set[int]:
    """Metric ids of a project, including metrics deleted since."""
    ids = set(
        session.exec(select(Metric.id).where(Metric.project_id == project_id)).all()
    )
    for record_id, deltas in _entries_by_record(session, TABLE_METRICS).items():
        if any(d.values().get("project_id") == project_id for d in deltas):
            ids.add(record_id)
    return ids


def _project_period_ids(
    session: Session, project_id: int, metric_ids: Set[int]
) -> Set[int]:
    """Period ids of a project, including periods deleted since."""
    ids: Set[int] = set()
    if metric_ids:
        ids.update(
            session.exec(
                select(MetricPeriod.id).where(MetricPeriod.metric_id.in_(metric_ids))  # type: ignore
            ).all()
        )
    for record_id, deltas in _entries_by_record(session, TABLE_METRIC_PERIODS).items():
        if any(d.values().get("metric_id") in metric_ids for d in deltas):
            ids.add(record_id)
    return ids


def _project_record_ids(session: Session, project_id: int, table_name: str) -> Set[int]:
    if table_name == TABLE_PROJECTS:
        return {project_id}
    metric_ids = _project_metric_ids(session, project_id)
    if table_name == TABLE_METRICS:
        return metric_ids
    if table_name == TABLE_METRIC_PERIODS:
        return _project_period_ids(session, project_id, metric_ids)
    if table_name == TABLE_COMMENTS:
        period_ids = _project_period_ids(session, project_id, metric_ids)
        return {
            record_id
            for record_id, deltas in _entries_by_record(session, TABLE_COMMENTS).items()
            if any(d.values().get("period_id") in period_ids for d in deltas)
        }
    # craids and project links hang directly off the project
    return {
        record_id
        for record_id, deltas in _entries_by_record(session, table_name).items()
        if any(d.values().get("project_id") == project_id for d in deltas)
    }


# Column linking each audited table to its parent on the way up to a project
OWNER_FIELDS: Dict[str, str] = {
    TABLE_PROJECTS: "id",
    TABLE_METRICS: "project_id",
    TABLE_METRIC_PERIODS: "metric_id",
    TABLE_COMMENTS: "period_id",
    TABLE_CRAIDS: "project_id",
    TABLE_PROJECT_LINKS: "project_id",
}


def _owner_ids(session: Session, project_id: int, table_name: str) -> Set[int]:
    """Parent ids a record of ``table_name`` must point at to belong to the project."""
    if table_name in (TABLE_METRIC_PERIODS, TABLE_COMMENTS):
        metric_ids = _project_metric_ids(session, project_id)
        if table_name == TABLE_METRIC_PERIODS:
            return metric_ids
        return _project_period_ids(session, project_id, metric_ids)
    return {project_id}


def _state_as_of(
    live: Optional[Dict[str, Any]], deltas: Sequence[AuditDelta], delta: AuditDelta
) -> Dict[str, Any]:
    """Record values right after ``delta``; a DELETE reports what it removed."""
    state = reconstruct_state_at(live, deltas, delta.created_at)
    return state if state is not None else delta.values()


def snapshot_points(
    session: Session, project_id: int, table_name: str = TABLE_METRIC_PERIODS
) -> List[str]:
    """Distinct audit timestamps touching a project's records, oldest first.

    Only entries written while the record belonged to the project count.
    """
    if table_name not in TABLE_MODELS:
        raise ValueError(f"Table {table_name!r} is not audited")
    owner_field = OWNER_FIELDS[table_name]
    owners = _owner_ids(session, project_id, table_name)
    record_ids = _project_record_ids(session, project_id, table_name)

    stamps = set()
    for record_id, deltas in _entries_by_record(session, table_name, record_ids).items():
        live = current_state(session, table_name, record_id)
        for delta in deltas:
            if _state_as_of(live, deltas, delta).get(owner_field) in owners:
                stamps.add(delta.created_at)
    return [format_timestamp(s) for s in sorted(stamps)]


def project_data_at(
    session: Session, project_id: int, timestamp: datetime
) -> List[Dict[str, Any]]:
    """The project grid (periods with metric names) as it stood at ``timestamp``."""
    project = session.get(Project, project_id)
    project_name = project.name if project else ""

    metric_ids = _project_metric_ids(session, project_id)
    metric_entries = _entries_by_record(session, TABLE_METRICS, metric_ids)
    metrics_at: Dict[int, Dict[str, Any]] = {}
    for metric_id in metric_ids:
        state = reconstruct_state_at(
            current_state(session, TABLE_METRICS, metric_id),
            metric_entries.get(metric_id, []),
            timestamp,
        )
        if state is not None and state.get("project_id") == project_id:
            metrics_at[metric_id] = state

    period_ids = _project_period_ids(session, project_id, metric_ids)
    period_entries = _entries_by_record(session, TABLE_METRIC_PERIODS, period_ids)

    rows: List[Dict[str, Any]] = []
    for period_id in period_ids:
        state = reconstruct_state_at(
            current_state(session, TABLE_METRIC_PERIODS, period_id),
            period_entries.get(period_id, []),
            timestamp,
        )
        # Periods of metrics outside the project at that moment are not its data
        if state is None or state.get("metric_id") not in metrics_at:
            continue
        metric = metrics_at[state["metric_id"]]
        rows.append(
            {
                "id": period_id,
                "reporting_date": state.get("reporting_date"),
                "metric": metric.get("name", ""),
                "metric_id": state.get("metric_id"),
                "expected": state.get("expected"),
                "final_target": state.get("target"),
                "complete": state.get("complete"),
                "commentary": state.get("commentary"),
                "owner": metric.get("owner"),
                "amber_tolerance": metric.get("amber_tolerance"),
                "red_tolerance": metric.get("red_tolerance"),
                "initiative": project_name,
            }
        )

    rows.sort(key=lambda r: (str(r["reporting_date"]), r["metric"], r["id"]))
    logger.info(
        f"Reconstructed {len(rows)} periods for project {project_id} at "
        f"{format_timestamp(timestamp)}"
    )
    return rows
