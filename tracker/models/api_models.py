"""Progress Tracker — API Request Models."""

from datetime import date
from typing import Optional
from pydantic import BaseModel, Field, model_validator

from tracker.core.registry import CraidStatus, CraidType, Frequency, Priority


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    initiative_manager: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    initiative_manager: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class MetricCreate(BaseModel):
    """Request body for POST /projects/{id}/metrics."""

    name: str = Field(min_length=1)
    owner: Optional[str] = None
    start_date: date
    end_date: date
    frequency: Frequency
    progression_type: Optional[str] = None
    """Unknown curve names fall back to linear."""
    final_target: float = Field(ge=0)
    amber_tolerance: Optional[float] = Field(default=None, ge=0)
    red_tolerance: Optional[float] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "name": "User Signups",
                    "start_date": "2024-01-31",
                    "end_date": "2024-12-31",
                    "frequency": "monthly",
                    "progression_type": "s-curve",
                    "final_target": 500,
                    "amber_tolerance": 5.0,
                    "red_tolerance": 10.0,
                }
            ]
        }
    }


class MetricUpdate(BaseModel):
    """Scope changes touch ``final_target`` only; existing periods keep their target."""

    name: Optional[str] = Field(default=None, min_length=1)
    owner: Optional[str] = None
    progression_type: Optional[str] = None
    final_target: Optional[float] = Field(default=None, ge=0)
    amber_tolerance: Optional[float] = Field(default=None, ge=0)
    red_tolerance: Optional[float] = Field(default=None, ge=0)


class PeriodCreate(BaseModel):
    metric_id: int
    reporting_date: date
    expected: float = Field(ge=0)
    target: float = Field(ge=0)
    complete: float = Field(default=0, ge=0)
    commentary: Optional[str] = None


class PeriodUpdate(BaseModel):
    expected: Optional[float] = Field(default=None, ge=0)
    target: Optional[float] = Field(default=None, ge=0)
    complete: Optional[float] = Field(default=None, ge=0)
    commentary: Optional[str] = None


class CommentCreate(BaseModel):
    comment_text: str = Field(min_length=1)


class CraidCreate(BaseModel):
    type: CraidType
    title: str = Field(min_length=1)
    description: str = ""
    status: CraidStatus = CraidStatus.OPEN
    priority: Priority = Priority.MEDIUM
    owner: Optional[str] = None
    period_id: Optional[int] = None


class CraidUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    status: Optional[CraidStatus] = None
    priority: Optional[Priority] = None
    owner: Optional[str] = None


class LinkCreate(BaseModel):
    title: str = Field(min_length=1)
    url: str = Field(min_length=1)


class LinkUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    url: Optional[str] = Field(default=None, min_length=1)
