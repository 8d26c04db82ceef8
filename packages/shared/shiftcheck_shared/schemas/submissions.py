"""Submission, working-state and review schemas shared by the server and the kiosk."""

from __future__ import annotations

import datetime as dt
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, UUID4

from .common import ReviewStatus, TaskStatus
from .tasklists import TaskDefinition


# ---------------------------------------------------------------------------
# Worker input
# ---------------------------------------------------------------------------

class TaskDraft(BaseModel):
    """The worker's in-progress input for one task, sent with a completion."""
    na: bool = False
    value: Optional[Union[float, str]] = None
    note: str = ""
    photos: List[str] = Field(default_factory=list)


class CompleteTaskRequest(BaseModel):
    """Request body for POST .../tasks/{taskId}/complete."""
    pin: str = Field(..., min_length=1, max_length=16)
    date: Optional[dt.date] = None  # defaults to today in the location's timezone
    draft: TaskDraft = Field(default_factory=TaskDraft)


class SignoffRequest(BaseModel):
    """Request body for POST .../signoff.

    `drafts` carries working state for tasks marked N/A on the device but not
    yet persisted; persisted rows always take precedence.
    """
    pin: str = Field(..., min_length=1, max_length=16)
    date: Optional[dt.date] = None
    drafts: Dict[UUID4, TaskDraft] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Authoritative rows
# ---------------------------------------------------------------------------

class SubmissionTaskRead(BaseModel):
    """Authoritative per-task row (the server side of working-state reconciliation)."""
    submission_id: UUID4
    task_id: UUID4
    status: TaskStatus = TaskStatus.INCOMPLETE
    review_status: ReviewStatus = ReviewStatus.PENDING
    na: bool = False
    value: Optional[str] = None
    note: str = ""
    photos: List[str] = Field(default_factory=list)
    rework_count: int = 0
    review_note: Optional[str] = None
    submitted_by: Optional[UUID4] = None
    definition: Optional[TaskDefinition] = None
    updated_at: Optional[dt.datetime] = None


class SubmissionRead(BaseModel):
    id: UUID4
    org_id: UUID4
    tasklist_id: UUID4
    location_id: UUID4
    date: dt.date
    status: ReviewStatus
    signed_by: Optional[str] = None
    signed_by_id: Optional[UUID4] = None
    submitted_by: Optional[UUID4] = None
    signed_at: Optional[dt.datetime] = None
    tasks: List[SubmissionTaskRead] = Field(default_factory=list)
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None


class WorkingStateRead(BaseModel):
    """Current authoritative state of one tasklist for one day."""
    tasklist_id: UUID4
    location_id: UUID4
    date: dt.date
    submission_id: Optional[UUID4] = None
    submission_status: Optional[ReviewStatus] = None
    signed_by: Optional[str] = None
    tasks: List[SubmissionTaskRead] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Review & rework
# ---------------------------------------------------------------------------

class ReviewRequest(BaseModel):
    """Request body for POST /submissions/{id}/review."""
    task_ids: List[UUID4] = Field(..., min_length=1)
    decision: Literal[ReviewStatus.APPROVED, ReviewStatus.REWORK]
    note: Optional[str] = Field(default=None, max_length=2000)


class ReviewResult(BaseModel):
    submission: SubmissionRead
    transitioned: List[UUID4] = Field(default_factory=list)


class ResubmitResult(BaseModel):
    submission: SubmissionRead
    resubmitted: List[UUID4] = Field(default_factory=list)
    still_rework: List[UUID4] = Field(default_factory=list)


class ReviewEntryRead(BaseModel):
    id: UUID4
    submission_id: UUID4
    task_id: UUID4
    review_status: ReviewStatus
    note: Optional[str] = None
    reviewer_id: Optional[UUID4] = None
    created_at: dt.datetime


class SubmissionFilters(BaseModel):
    """Filter set for listing submissions (manager dashboard, rework queue)."""
    date_from: Optional[dt.date] = None
    date_to: Optional[dt.date] = None
    location_id: Optional[UUID4] = None
    employee: Optional[str] = None
    category: Optional[str] = None
    status: Optional[ReviewStatus] = None
    min_rework_count: Optional[int] = Field(default=None, ge=0)
    has_photo: Optional[bool] = None
    has_note: Optional[bool] = None


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------

class EvidenceUploadResponse(BaseModel):
    path: str
    url: str
