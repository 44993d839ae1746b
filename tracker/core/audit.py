"""Progress Tracker — Audit Log Recorder.

Every create/update/delete on a tracked table appends one row to
``audit_log``. UPDATE rows carry only the fields that changed; CREATE rows
carry the full new record and DELETE rows the full last known record.
The session is passed in and never committed here; the caller owns the
transaction so the change and its audit row land together.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlmodel import Session, SQLModel, select

from tracker.core.logging import get_logger
from tracker.core.registry import AuditAction
from tracker.models.tracker_models import AuditLogEntry

logger = get_logger("core.audit")

# Bookkeeping columns that are not part of a record's audited state
UNAUDITED_FIELDS = {"updated_at"}


@dataclass(frozen=True)
class Actor:
    """Who made a change, as far as the request told us."""

    user_id: Optional[int] = None
    user_email: Optional[str] = None


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; a trailing Z and naive values mean UTC."""
    text = (value or "").strip()
    if not text:
        raise ValueError("Timestamp is required")
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(f"Invalid ISO-8601 timestamp: {value}")
    return as_utc(parsed)


def format_timestamp(value: datetime) -> str:
    return as_utc(value).isoformat()


def row_values(row: SQLModel) -> Dict[str, Any]:
    """JSON-safe field values of a table row."""
    values = row.model_dump(mode="json", exclude=UNAUDITED_FIELDS)
    for field in values:
        raw = getattr(row, field, None)
        if isinstance(raw, datetime):
            values[field] = format_timestamp(raw)
    return values


def diff_values(
    before: Dict[str, Any], after: Dict[str, Any]
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Split two snapshots into (old, new) dicts holding only changed fields."""
    old: Dict[str, Any] = {}
    new: Dict[str, Any] = {}
    for field in sorted(set(before) | set(after)):
        if field in UNAUDITED_FIELDS:
            continue
        if before.get(field) != after.get(field):
            if field in before:
                old[field] = before[field]
            if field in after:
                new[field] = after[field]
    return old, new


def record_audit(
    session: Session,
    action: AuditAction,
    table_name: str,
    record_id: int,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    description: str = "",
    actor: Optional[Actor] = None,
) -> Optional[AuditLogEntry]:
    """Append an audit row. UPDATEs that change nothing are skipped."""
    action = AuditAction(action)
    if action == AuditAction.UPDATE:
        old_values, new_values = diff_values(old_values or {}, new_values or {})
        if not old_values and not new_values:
            return None

    actor = actor or Actor()
    entry = AuditLogEntry(
        user_id=actor.user_id,
        user_email=actor.user_email,
        action=action.value,
        table_name=table_name,
        record_id=record_id,
        old_values=json.dumps(old_values) if old_values is not None else None,
        new_values=json.dumps(new_values) if new_values is not None else None,
        description=description,
    )
    session.add(entry)
    logger.debug(
        f"Audit {action.value} {table_name}#{record_id}",
        extra={"table_name": table_name, "record_id": record_id},
    )
    return entry


def audit_create(
    session: Session,
    table_name: str,
    row: SQLModel,
    actor: Optional[Actor] = None,
    description: str = "",
) -> Optional[AuditLogEntry]:
    return record_audit(
        session,
        AuditAction.CREATE,
        table_name,
        row.id,
        new_values=row_values(row),
        description=description or f"Created {table_name} record {row.id}",
        actor=actor,
    )


def audit_update(
    session: Session,
    table_name: str,
    row: SQLModel,
    before: Dict[str, Any],
    actor: Optional[Actor] = None,
    description: str = "",
) -> Optional[AuditLogEntry]:
    """Audit the difference between ``before`` and the row's current values."""
    after = row_values(row)
    if not description:
        old, new = diff_values(before, after)
        changes = ", ".join(f"{k} from {old.get(k)} to {new.get(k)}" for k in new)
        description = f"Updated {table_name} record {row.id}: {changes}"
    return record_audit(
        session,
        AuditAction.UPDATE,
        table_name,
        row.id,
        old_values=before,
        new_values=after,
        description=description,
        actor=actor,
    )


def audit_delete(
    session: Session,
    table_name: str,
    row: SQLModel,
    actor: Optional[Actor] = None,
    description: str = "",
) -> Optional[AuditLogEntry]:
    return record_audit(
        session,
        AuditAction.DELETE,
        table_name,
        row.id,
        old_values=row_values(row),
        description=description or f"Deleted {table_name} record {row.id}",
        actor=actor,
    )


def list_audit(
    session: Session,
    table_name: Optional[str] = None,
    record_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[AuditLogEntry]:
    """Audit rows, newest first."""
    query = select(AuditLogEntry)
    if table_name:
        query = query.where(AuditLogEntry.table_name == table_name)
    if record_id is not None:
        query = query.where(AuditLogEntry.record_id == record_id)
    if action:
        query = query.where(AuditLogEntry.action == action.upper())
    query = (
        query.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())  # type: ignore
        .offset(offset)
        .limit(limit)
    )
    return list(session.exec(query).all())


def entry_to_dict(entry: AuditLogEntry) -> Dict[str, Any]:
    """API representation of an audit row; stored JSON is decoded as-is."""
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "user_email": entry.user_email,
        "action": entry.action,
        "table_name": entry.table_name,
        "record_id": entry.record_id,
        "old_values": json.loads(entry.old_values) if entry.old_values else None,
        "new_values": json.loads(entry.new_values) if entry.new_values else None,
        "description": entry.description,
        "created_at": format_timestamp(entry.created_at),
    }
