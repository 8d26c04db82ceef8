"""Submission, per-task submission rows and review history."""

import datetime as dt
from typing import List, Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin, _utcnow


class Submission(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "submissions"
    __table_args__ = (
        sa.UniqueConstraint(
            "tasklist_id", "location_id", "date", name="uq_submissions_natural_key"
        ),
    )

    org_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    tasklist_id: uuid.UUID = Field(foreign_key="checklist_templates.id", nullable=False, index=True)
    location_id: uuid.UUID = Field(foreign_key="locations.id", nullable=False, index=True)
    date: dt.date = Field(nullable=False, index=True)  # calendar date in the location's timezone
    status: str = Field(default="Pending", nullable=False)  # Pending | Approved | Rework
    signed_by: Optional[str] = None  # display name of the PIN-verified actor
    signed_by_id: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id")
    submitted_by: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id")
    signed_at: Optional[dt.datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))


class SubmissionTask(SQLModel, table=True):
    __tablename__ = "submission_tasks"

    submission_id: uuid.UUID = Field(foreign_key="submissions.id", primary_key=True)
    task_id: uuid.UUID = Field(primary_key=True)
    org_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    status: str = Field(default="Incomplete", nullable=False)  # Incomplete | Complete
    review_status: str = Field(default="Pending", nullable=False)
    na: bool = Field(default=False, nullable=False)
    value: Optional[str] = None
    note: str = Field(default="", nullable=False)
    photos: List[str] = Field(default_factory=list, sa_type=sa.JSON, nullable=False)
    rework_count: int = Field(default=0, nullable=False)
    review_note: Optional[str] = None
    submitted_by: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id")
    definition: dict = Field(default_factory=dict, sa_type=sa.JSON, nullable=False)
    updated_at: dt.datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now(), "onupdate": _utcnow},
        sa_type=sa.DateTime(timezone=True),
    )


class ReviewEntry(UUIDMixin, SQLModel, table=True):
    __tablename__ = "review_entries"

    org_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    submission_id: uuid.UUID = Field(foreign_key="submissions.id", nullable=False, index=True)
    task_id: uuid.UUID = Field(nullable=False, index=True)
    review_status: str = Field(nullable=False)
    note: Optional[str] = None
    reviewer_id: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id")
    created_at: dt.datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
