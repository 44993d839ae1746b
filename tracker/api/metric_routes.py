"""Progress Tracker — Metric & Period API Routes."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from tracker.analyzer.progression_engine import generate_metric_periods
from tracker.analyzer.variance_engine import metric_status_report
from tracker.api.dependencies import get_actor, get_or_404, sent_fields
from tracker.config import settings
from tracker.core.audit import Actor, audit_create, audit_update, row_values
from tracker.core.logging import get_logger
from tracker.core.records import delete_metric, delete_period
from tracker.core.registry import TABLE_METRIC_PERIODS, TABLE_METRICS, ProgressionType
from tracker.database import get_session
from tracker.models.analysis_models import MetricStatusReport
from tracker.models.api_models import MetricCreate, MetricUpdate, PeriodCreate, PeriodUpdate
from tracker.models.tracker_models import Metric, MetricPeriod, Project, utcnow

logger = get_logger("api.metrics")

router = APIRouter(tags=["Metrics"])


def _ordered_periods(session: Session, metric_id: int):
    return session.exec(
        select(MetricPeriod)
        .where(MetricPeriod.metric_id == metric_id)
        .order_by(MetricPeriod.reporting_date)
    ).all()


# ── Metrics ──


@router.get("/projects/{project_id}/metrics")
async def list_metrics(project_id: int, session: Session = Depends(get_session)):
    get_or_404(session, Project, project_id, "Project")
    return session.exec(
        select(Metric).where(Metric.project_id == project_id).order_by(Metric.id)
    ).all()


@router.post("/projects/{project_id}/metrics")
async def create_metric(
    project_id: int,
    request: MetricCreate,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    """Create a metric and generate its reporting periods along the target curve."""
    project = get_or_404(session, Project, project_id, "Project")

    metric = Metric(
        project_id=project_id,
        name=request.name,
        owner=request.owner or project.initiative_manager or actor.user_email,
        start_date=request.start_date,
        end_date=request.end_date,
        frequency=request.frequency.value,
        progression_type=ProgressionType.parse(
            request.progression_type or settings.default_progression_type
        ).value,
        final_target=request.final_target,
        amber_tolerance=(
            request.amber_tolerance
            if request.amber_tolerance is not None
            else settings.default_amber_tolerance
        ),
        red_tolerance=(
            request.red_tolerance
            if request.red_tolerance is not None
            else settings.default_red_tolerance
        ),
    )
    try:
        session.add(metric)
        session.flush()
        audit_create(session, TABLE_METRICS, metric, actor, f"Created metric {metric.name}")
        periods = generate_metric_periods(session, metric, actor)
        session.commit()
    except ValueError as e:
        session.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    except IntegrityError:
        session.rollback()
        raise HTTPException(
            status_code=409,
            detail=f"Metric {request.name!r} already exists in project {project_id}",
        )

    session.refresh(metric)
    logger.info(f"Metric {metric.id} created with {len(periods)} periods")
    return {"id": metric.id, "periods_created": len(periods)}


@router.put("/metrics/{metric_id}")
async def update_metric(
    metric_id: int,
    request: MetricUpdate,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    """Update a metric. A new final_target is a scope change: periods keep their own target."""
    metric = get_or_404(session, Metric, metric_id, "Metric")
    changes = sent_fields(request, nullable=("owner",))
    if "progression_type" in changes:
        changes["progression_type"] = ProgressionType.parse(changes["progression_type"]).value

    before = row_values(metric)
    for field, value in changes.items():
        setattr(metric, field, value)
    metric.updated_at = utcnow()
    session.add(metric)

    if "final_target" in changes and changes["final_target"] != before["final_target"]:
        logger.info(
            f"Scope change on metric {metric_id}: {before['final_target']} → {changes['final_target']}"
        )
    audit_update(session, TABLE_METRICS, metric, before, actor)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=409, detail="Metric name already used in this project")
    return {"success": True}


@router.delete("/metrics/{metric_id}")
async def remove_metric(
    metric_id: int,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    metric = get_or_404(session, Metric, metric_id, "Metric")
    removed = delete_metric(session, metric, actor)
    session.commit()
    return {"success": True, "periods_deleted": removed}


@router.get("/metrics/{metric_id}/periods")
async def list_periods(metric_id: int, session: Session = Depends(get_session)):
    get_or_404(session, Metric, metric_id, "Metric")
    return _ordered_periods(session, metric_id)


@router.get("/metrics/{metric_id}/status", response_model=MetricStatusReport)
async def get_metric_status(
    metric_id: int,
    as_of: Optional[date] = Query(None, description="Evaluate as if today were this date"),
    session: Session = Depends(get_session),
):
    """RAG status and variance for every period of the metric."""
    metric = get_or_404(session, Metric, metric_id, "Metric")
    return metric_status_report(metric, _ordered_periods(session, metric_id), today=as_of)


# ── Periods ──


@router.post("/metric-periods")
async def create_period(
    request: PeriodCreate,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    get_or_404(session, Metric, request.metric_id, "Metric")
    period = MetricPeriod(**request.model_dump())
    try:
        session.add(period)
        session.flush()
    except IntegrityError:
        session.rollback()
        raise HTTPException(
            status_code=409,
            detail=f"Metric {request.metric_id} already has a period on {request.reporting_date}",
        )
    audit_create(session, TABLE_METRIC_PERIODS, period, actor)
    session.commit()
    return {"id": period.id, "success": True}


def _apply_period_update(
    session: Session, period_id: int, request: PeriodUpdate, actor: Actor
) -> dict:
    period = get_or_404(session, MetricPeriod, period_id, "Period")
    changes = sent_fields(request, nullable=("commentary",))
    before = row_values(period)
    for field, value in changes.items():
        setattr(period, field, value)
    if changes:
        period.updated_at = utcnow()
        session.add(period)
        audit_update(session, TABLE_METRIC_PERIODS, period, before, actor)
        session.commit()
    return {"success": True}


@router.put("/metric-periods/{period_id}")
async def update_period(
    period_id: int,
    request: PeriodUpdate,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    return _apply_period_update(session, period_id, request, actor)


@router.patch("/metric-periods/{period_id}")
async def patch_period(
    period_id: int,
    request: PeriodUpdate,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    return _apply_period_update(session, period_id, request, actor)


@router.delete("/metric-periods/{period_id}")
async def remove_period(
    period_id: int,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    period = get_or_404(session, MetricPeriod, period_id, "Period")
    delete_period(session, period, actor)
    session.commit()
    return {"success": True}
