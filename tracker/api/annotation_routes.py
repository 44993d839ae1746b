"""Progress Tracker — Comment, CRAID & Project Link Routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session, select

from tracker.api.dependencies import get_actor, get_or_404, sent_fields
from tracker.core.audit import Actor, audit_create, audit_delete, audit_update, row_values
from tracker.core.logging import get_logger
from tracker.core.registry import TABLE_COMMENTS, TABLE_CRAIDS, TABLE_PROJECT_LINKS, CraidType
from tracker.database import get_session
from tracker.models.api_models import (
    CommentCreate,
    CraidCreate,
    CraidUpdate,
    LinkCreate,
    LinkUpdate,
)
from tracker.models.tracker_models import (
    Comment,
    Craid,
    Metric,
    MetricPeriod,
    Project,
    ProjectLink,
    utcnow,
)

logger = get_logger("api.annotations")

router = APIRouter(tags=["Annotations"])


# ── Comments ──


@router.get("/periods/{period_id}/comments")
async def list_comments(period_id: int, session: Session = Depends(get_session)):
    get_or_404(session, MetricPeriod, period_id, "Period")
    return session.exec(
        select(Comment)
        .where(Comment.period_id == period_id)
        .order_by(Comment.created_at.desc(), Comment.id.desc())  # type: ignore
    ).all()


@router.post("/periods/{period_id}/comments")
async def create_comment(
    period_id: int,
    request: CommentCreate,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    get_or_404(session, MetricPeriod, period_id, "Period")
    comment = Comment(
        period_id=period_id, comment_text=request.comment_text, created_by=actor.user_email
    )
    session.add(comment)
    session.flush()
    audit_create(session, TABLE_COMMENTS, comment, actor)
    session.commit()
    return {"id": comment.id}


@router.put("/comments/{comment_id}")
async def update_comment(
    comment_id: int,
    request: CommentCreate,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    comment = get_or_404(session, Comment, comment_id, "Comment")
    before = row_values(comment)
    comment.comment_text = request.comment_text
    session.add(comment)
    audit_update(session, TABLE_COMMENTS, comment, before, actor)
    session.commit()
    return {"success": True}


@router.delete("/comments/{comment_id}")
async def remove_comment(
    comment_id: int,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    comment = get_or_404(session, Comment, comment_id, "Comment")
    audit_delete(session, TABLE_COMMENTS, comment, actor)
    session.delete(comment)
    session.commit()
    return {"success": True}


# ── CRAIDs ──


@router.get("/projects/{project_id}/craids")
async def list_craids(
    project_id: int,
    type: Optional[CraidType] = Query(None, description="Filter by CRAID type"),
    session: Session = Depends(get_session),
):
    get_or_404(session, Project, project_id, "Project")
    query = select(Craid).where(Craid.project_id == project_id)
    if type is not None:
        query = query.where(Craid.type == type.value)
    craids = session.exec(
        query.order_by(Craid.created_at.desc(), Craid.id.desc())  # type: ignore
    ).all()

    period_dates = {}
    period_ids = {c.period_id for c in craids if c.period_id is not None}
    if period_ids:
        period_dates = {
            p.id: p.reporting_date.isoformat()
            for p in session.exec(
                select(MetricPeriod).where(MetricPeriod.id.in_(period_ids))  # type: ignore
            ).all()
        }
    return [
        {**c.model_dump(), "reporting_date": period_dates.get(c.period_id)} for c in craids
    ]


def _check_period_in_project(session: Session, project_id: int, period_id: int) -> None:
    period = get_or_404(session, MetricPeriod, period_id, "Period")
    metric = session.get(Metric, period.metric_id)
    if metric is None or metric.project_id != project_id:
        raise HTTPException(
            status_code=400, detail=f"Period {period_id} does not belong to project {project_id}"
        )


@router.post("/projects/{project_id}/craids")
async def create_craid(
    project_id: int,
    request: CraidCreate,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    get_or_404(session, Project, project_id, "Project")
    if request.period_id is not None:
        _check_period_in_project(session, project_id, request.period_id)

    craid = Craid(
        project_id=project_id,
        type=request.type.value,
        title=request.title,
        description=request.description,
        status=request.status.value,
        priority=request.priority.value,
        owner=request.owner,
        period_id=request.period_id,
        created_by=actor.user_email,
    )
    session.add(craid)
    session.flush()
    audit_create(session, TABLE_CRAIDS, craid, actor, f"Created {craid.type}: {craid.title}")
    session.commit()
    logger.info(f"CRAID {craid.id} ({craid.type}) created for project {project_id}")
    return {"id": craid.id}


@router.put("/craids/{craid_id}")
async def update_craid(
    craid_id: int,
    request: CraidUpdate,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    craid = get_or_404(session, Craid, craid_id, "CRAID")
    before = row_values(craid)
    for field, value in sent_fields(request, nullable=("owner",), mode="json").items():
        setattr(craid, field, value)
    craid.updated_at = utcnow()
    session.add(craid)
    audit_update(session, TABLE_CRAIDS, craid, before, actor)
    session.commit()
    return {"success": True}


@router.delete("/craids/{craid_id}")
async def remove_craid(
    craid_id: int,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    craid = get_or_404(session, Craid, craid_id, "CRAID")
    audit_delete(session, TABLE_CRAIDS, craid, actor)
    session.delete(craid)
    session.commit()
    return {"success": True}


# ── Project Links ──


@router.get("/projects/{project_id}/links")
async def list_links(project_id: int, session: Session = Depends(get_session)):
    get_or_404(session, Project, project_id, "Project")
    return session.exec(
        select(ProjectLink).where(ProjectLink.project_id == project_id).order_by(ProjectLink.id)
    ).all()


@router.post("/projects/{project_id}/links")
async def create_link(
    project_id: int,
    request: LinkCreate,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    get_or_404(session, Project, project_id, "Project")
    link = ProjectLink(project_id=project_id, title=request.title, url=request.url)
    session.add(link)
    session.flush()
    audit_create(session, TABLE_PROJECT_LINKS, link, actor)
    session.commit()
    return {"id": link.id}


@router.put("/project-links/{link_id}")
async def update_link(
    link_id: int,
    request: LinkUpdate,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    link = get_or_404(session, ProjectLink, link_id, "Link")
    before = row_values(link)
    for field, value in sent_fields(request).items():
        setattr(link, field, value)
    session.add(link)
    audit_update(session, TABLE_PROJECT_LINKS, link, before, actor)
    session.commit()
    return {"success": True}


@router.delete("/project-links/{link_id}")
async def remove_link(
    link_id: int,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    link = get_or_404(session, ProjectLink, link_id, "Link")
    audit_delete(session, TABLE_PROJECT_LINKS, link, actor)
    session.delete(link)
    session.commit()
    return {"success": True}
