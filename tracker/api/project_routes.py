"""Progress Tracker — Project API Routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session, select

from tracker.analyzer.time_travel import (
    AuditLogCorruptError,
    project_data_at,
    snapshot_points,
)
from tracker.api.dependencies import get_actor, get_or_404, sent_fields, timestamp_or_400
from tracker.core.audit import Actor, audit_create, audit_update, format_timestamp, row_values
from tracker.core.logging import get_logger
from tracker.core.records import delete_project
from tracker.core.registry import TABLE_METRIC_PERIODS, TABLE_PROJECTS
from tracker.database import get_session
from tracker.models.api_models import ProjectCreate, ProjectUpdate
from tracker.models.tracker_models import Metric, MetricPeriod, Project, utcnow

logger = get_logger("api.projects")

router = APIRouter(prefix="/projects", tags=["Projects"])


def _name_taken(session: Session, name: str, exclude_id: Optional[int] = None) -> bool:
    query = select(Project).where(Project.name == name)
    if exclude_id is not None:
        query = query.where(Project.id != exclude_id)
    return session.exec(query).first() is not None


@router.get("")
async def list_projects(session: Session = Depends(get_session)):
    """All projects, newest first."""
    return session.exec(
        select(Project).order_by(Project.created_at.desc(), Project.id.desc())  # type: ignore
    ).all()


@router.post("")
async def create_project(
    request: ProjectCreate,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    if _name_taken(session, request.name):
        raise HTTPException(status_code=409, detail=f"Project {request.name!r} already exists")
    project = Project(**request.model_dump())
    session.add(project)
    session.flush()
    audit_create(session, TABLE_PROJECTS, project, actor, f"Created project {project.name}")
    session.commit()
    session.refresh(project)
    logger.info(f"Created project {project.id} ({project.name})")
    return project


@router.get("/{project_id}")
async def get_project(project_id: int, session: Session = Depends(get_session)):
    return get_or_404(session, Project, project_id, "Project")


@router.put("/{project_id}")
async def update_project(
    project_id: int,
    request: ProjectUpdate,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    project = get_or_404(session, Project, project_id, "Project")
    changes = sent_fields(
        request, nullable=("initiative_manager", "start_date", "end_date")
    )
    if "name" in changes and _name_taken(session, changes["name"], exclude_id=project_id):
        raise HTTPException(status_code=409, detail=f"Project {changes['name']!r} already exists")

    before = row_values(project)
    for field, value in changes.items():
        setattr(project, field, value)
    project.updated_at = utcnow()
    session.add(project)
    audit_update(session, TABLE_PROJECTS, project, before, actor)
    session.commit()
    session.refresh(project)
    return project


@router.delete("/{project_id}")
async def remove_project(
    project_id: int,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    project = get_or_404(session, Project, project_id, "Project")
    delete_project(session, project, actor)
    session.commit()
    return {"success": True}


@router.get("/{project_id}/data")
async def get_project_data(project_id: int, session: Session = Depends(get_session)):
    """Grid view: every period of every metric in the project."""
    project = get_or_404(session, Project, project_id, "Project")
    rows = session.exec(
        select(MetricPeriod, Metric)
        .join(Metric, MetricPeriod.metric_id == Metric.id)
        .where(Metric.project_id == project_id)
        .order_by(MetricPeriod.reporting_date, Metric.name)
    ).all()
    return [
        {
            "id": period.id,
            "reporting_date": period.reporting_date.isoformat(),
            "metric": metric.name,
            "metric_id": metric.id,
            "expected": period.expected,
            "final_target": period.target,
            "complete": period.complete,
            "commentary": period.commentary,
            "owner": metric.owner,
            "amber_tolerance": metric.amber_tolerance,
            "red_tolerance": metric.red_tolerance,
            "initiative": project.name,
            "initiative_manager": project.initiative_manager,
        }
        for period, metric in rows
    ]


@router.get("/{project_id}/data/time-travel")
async def get_project_data_time_travel(
    project_id: int,
    timestamp: str = Query(..., description="ISO-8601 timestamp"),
    session: Session = Depends(get_session),
):
    """The project grid as it stood at ``timestamp``, rebuilt from the audit log."""
    get_or_404(session, Project, project_id, "Project")
    when = timestamp_or_400(timestamp)
    try:
        rows = project_data_at(session, project_id, when)
    except AuditLogCorruptError as e:
        logger.error(f"Time travel failed for project {project_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Audit log is corrupt: {e}")
    return {
        "status": "success",
        "timestamp": format_timestamp(when),
        "count": len(rows),
        "data": rows,
    }


@router.get("/{project_id}/snapshots")
async def get_snapshot_points(
    project_id: int,
    table_name: str = Query(TABLE_METRIC_PERIODS),
    session: Session = Depends(get_session),
):
    """Discrete timestamps a history slider can step through, oldest first."""
    get_or_404(session, Project, project_id, "Project")
    try:
        points = snapshot_points(session, project_id, table_name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AuditLogCorruptError as e:
        raise HTTPException(status_code=500, detail=f"Audit log is corrupt: {e}")
    return {"status": "success", "count": len(points), "timestamps": points}
