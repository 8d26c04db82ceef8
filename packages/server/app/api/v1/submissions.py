"""
Submission endpoints: manager dashboard listing, review, worker resubmission
and review history.

Review decisions require the manager role. Invalid transitions reject the
whole batch with 422 INVALID_REVIEW_TRANSITION.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthenticatedUser, require_manager, require_member
from app.core.database import get_session
from app.core.events import TABLE_SUBMISSION_TASKS, TABLE_SUBMISSIONS, broadcast_change
from app.services.review import list_history, resubmit, review_tasks
from app.services.submissions import (
    get_submission_or_404,
    list_submissions,
    load_submission_read,
)
from shiftcheck_shared.schemas.common import ReviewStatus
from shiftcheck_shared.schemas.submissions import (
    ResubmitResult,
    ReviewEntryRead,
    ReviewRequest,
    ReviewResult,
    SubmissionFilters,
    SubmissionRead,
)

router = APIRouter()


@router.get("/", response_model=List[SubmissionRead])
async def list_submissions_endpoint(
    orgSlug: str,
    date_from: Optional[dt.date] = None,
    date_to: Optional[dt.date] = None,
    location_id: Optional[uuid.UUID] = None,
    employee: Optional[str] = None,
    category: Optional[str] = None,
    status: Optional[ReviewStatus] = None,
    min_rework_count: Optional[int] = Query(None, ge=0),
    has_photo: Optional[bool] = None,
    has_note: Optional[bool] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(25, ge=1, le=100),
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    """List submissions, newest first. Task-level filters narrow the tasks returned."""
    filters = SubmissionFilters(
        date_from=date_from,
        date_to=date_to,
        location_id=location_id,
        employee=employee,
        category=category,
        status=status,
        min_rework_count=min_rework_count,
        has_photo=has_photo,
        has_note=has_note,
    )
    return await list_submissions(
        session, auth.org_id, filters, offset=(page - 1) * per_page, limit=per_page
    )


@router.get("/{submission_id}", response_model=SubmissionRead)
async def get_submission_endpoint(
    orgSlug: str,
    submission_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    submission = await get_submission_or_404(session, submission_id, auth.org_id)
    return await load_submission_read(session, submission)


@router.post("/{submission_id}/review", response_model=ReviewResult)
async def review_endpoint(
    orgSlug: str,
    submission_id: uuid.UUID,
    body: ReviewRequest,
    auth: AuthenticatedUser = Depends(require_manager),
    session: AsyncSession = Depends(get_session),
):
    """Approve or send back a batch of tasks."""
    submission = await get_submission_or_404(session, submission_id, auth.org_id)
    transitioned = await review_tasks(
        session,
        submission,
        body.task_ids,
        body.decision,
        body.note,
        reviewer_id=auth.user_id,
    )
    await session.commit()
    await broadcast_change(
        auth.org_id, [TABLE_SUBMISSION_TASKS, TABLE_SUBMISSIONS], submission.location_id
    )
    return ReviewResult(
        submission=await load_submission_read(session, submission),
        transitioned=transitioned,
    )


@router.post("/{submission_id}/resubmit", response_model=ResubmitResult)
async def resubmit_endpoint(
    orgSlug: str,
    submission_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    """Move fixed Rework tasks back to Pending for another review."""
    submission = await get_submission_or_404(session, submission_id, auth.org_id)
    moved, remaining = await resubmit(session, submission, actor_id=auth.user_id)
    await session.commit()
    await broadcast_change(
        auth.org_id, [TABLE_SUBMISSION_TASKS, TABLE_SUBMISSIONS], submission.location_id
    )
    return ResubmitResult(
        submission=await load_submission_read(session, submission),
        resubmitted=moved,
        still_rework=remaining,
    )


@router.get("/{submission_id}/history", response_model=List[ReviewEntryRead])
async def history_endpoint(
    orgSlug: str,
    submission_id: uuid.UUID,
    task_id: Optional[uuid.UUID] = None,
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    """Review history (approvals, rework requests, resubmissions), oldest first."""
    submission = await get_submission_or_404(session, submission_id, auth.org_id)
    return await list_history(session, submission.id, task_id)
