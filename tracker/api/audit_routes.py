"""Progress Tracker — Audit Log & History Routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session

from tracker.analyzer.consistency_engine import build_consistency_report
from tracker.analyzer.time_travel import (
    TABLE_MODELS,
    AuditLogCorruptError,
    reconstruct_record_at,
)
from tracker.api.dependencies import timestamp_or_400
from tracker.core.audit import entry_to_dict, format_timestamp, list_audit
from tracker.core.logging import get_logger
from tracker.database import get_session
from tracker.models.analysis_models import ConsistencyReport

logger = get_logger("api.audit")

router = APIRouter(tags=["Audit"])


@router.get("/audit")
async def get_audit_log(
    table_name: Optional[str] = Query(None),
    record_id: Optional[int] = Query(None),
    action: Optional[str] = Query(None, description="CREATE | UPDATE | DELETE"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
):
    """Audit entries, newest first."""
    entries = list_audit(session, table_name, record_id, action, limit, offset)
    try:
        data = [entry_to_dict(e) for e in entries]
    except ValueError as e:
        raise HTTPException(status_code=500, detail=f"Audit log is corrupt: {e}")
    return {"status": "success", "count": len(data), "data": data}


@router.get("/audit/{table_name}/{record_id}/at")
async def get_record_at(
    table_name: str,
    record_id: int,
    timestamp: str = Query(..., description="ISO-8601 timestamp"),
    session: Session = Depends(get_session),
):
    """A single record as it stood at ``timestamp``."""
    if table_name not in TABLE_MODELS:
        raise HTTPException(status_code=404, detail=f"Table {table_name!r} is not audited")
    when = timestamp_or_400(timestamp)
    try:
        state = reconstruct_record_at(session, table_name, record_id, when)
    except AuditLogCorruptError as e:
        logger.error(
            f"Cannot rebuild {table_name}#{record_id}: {e}",
            extra={"table_name": table_name, "record_id": record_id},
        )
        raise HTTPException(status_code=500, detail=f"Audit log is corrupt: {e}")
    return {
        "status": "success",
        "table_name": table_name,
        "record_id": record_id,
        "timestamp": format_timestamp(when),
        "exists": state is not None,
        "values": state,
    }


@router.get("/admin/consistency-report", response_model=ConsistencyReport)
async def get_consistency_report(session: Session = Depends(get_session)):
    """Planning patterns worth a second look."""
    return build_consistency_report(session)
