"""Progress Tracker — Audited Cascading Deletes.

The database could cascade on its own, but then the audit log would never
hear about the child rows and time travel could not bring them back.
Children are therefore deleted here one by one, each with its own DELETE
entry. Nothing is committed.
"""

from typing import Optional

from sqlmodel import Session, select

from tracker.core.audit import Actor, audit_delete, audit_update, row_values
from tracker.core.logging import get_logger
from tracker.core.registry import (
    TABLE_COMMENTS,
    TABLE_CRAIDS,
    TABLE_METRIC_PERIODS,
    TABLE_METRICS,
    TABLE_PROJECT_LINKS,
    TABLE_PROJECTS,
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

logger = get_logger("core.records")


def delete_period(session: Session, period: MetricPeriod, actor: Optional[Actor] = None) -> None:
    for comment in session.exec(select(Comment).where(Comment.period_id == period.id)).all():
        audit_delete(session, TABLE_COMMENTS, comment, actor)
        session.delete(comment)
    for craid in session.exec(select(Craid).where(Craid.period_id == period.id)).all():
        before = row_values(craid)
        craid.period_id = None
        craid.updated_at = utcnow()
        session.add(craid)
        audit_update(session, TABLE_CRAIDS, craid, before, actor)
    session.flush()
    audit_delete(session, TABLE_METRIC_PERIODS, period, actor)
    session.delete(period)


def delete_metric(session: Session, metric: Metric, actor: Optional[Actor] = None) -> int:
    """Delete a metric and its periods; returns the number of periods removed."""
    periods = session.exec(select(MetricPeriod).where(MetricPeriod.metric_id == metric.id)).all()
    for period in periods:
        delete_period(session, period, actor)
    session.flush()
    audit_delete(session, TABLE_METRICS, metric, actor, f"Deleted metric {metric.name}")
    session.delete(metric)
    logger.info(f"Deleted metric {metric.id} with {len(periods)} periods")
    return len(periods)


def delete_project(session: Session, project: Project, actor: Optional[Actor] = None) -> None:
    for metric in session.exec(select(Metric).where(Metric.project_id == project.id)).all():
        delete_metric(session, metric, actor)
    for craid in session.exec(select(Craid).where(Craid.project_id == project.id)).all():
        audit_delete(session, TABLE_CRAIDS, craid, actor)
        session.delete(craid)
    for link in session.exec(select(ProjectLink).where(ProjectLink.project_id == project.id)).all():
        audit_delete(session, TABLE_PROJECT_LINKS, link, actor)
        session.delete(link)
    session.flush()
    audit_delete(session, TABLE_PROJECTS, project, actor, f"Deleted project {project.name}")
    session.delete(project)
    logger.info(f"Deleted project {project.id} ({project.name})")
