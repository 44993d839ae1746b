"""Progress Tracker — Shared Route Dependencies."""

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from fastapi import Header, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, SQLModel

from tracker.core.audit import Actor, parse_timestamp


def get_actor(
    x_user_id: Optional[int] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
) -> Actor:
    """Who is acting, for audit attribution. Not an authentication check."""
    return Actor(user_id=x_user_id, user_email=x_user_email)


def get_or_404(session: Session, model: type, record_id: int, label: str) -> SQLModel:
    row = session.get(model, record_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"{label} with ID {record_id} not found")
    return row


def timestamp_or_400(value: str) -> datetime:
    try:
        return parse_timestamp(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def sent_fields(request: BaseModel, nullable: Iterable[str] = (), **dump_kwargs) -> Dict[str, Any]:
    """Fields the client sent. An explicit null only clears columns listed in ``nullable``."""
    allowed = set(nullable)
    return {
        field: value
        for field, value in request.model_dump(exclude_unset=True, **dump_kwargs).items()
        if value is not None or field in allowed
    }
