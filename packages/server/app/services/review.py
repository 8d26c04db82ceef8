"""
Review & rework loop: managers approve or send tasks back, workers resubmit.

Task-level review transitions:
    Pending  -> Approved | Rework
    Rework   -> Pending           (worker resubmission only)
    Approved -> Rework            (re-review)
Every transition appends a ReviewEntry and recomputes the submission aggregate.
"""

from __future__ import annotations

import uuid
from typing import Optional, Sequence

import structlog
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import INVALID_REVIEW_TRANSITION, coded_error
from app.models.base import _utcnow
from app.models.submission import ReviewEntry, Submission, SubmissionTask
from app.services.submissions import (
    get_rows,
    recompute_submission_status,
    row_definition,
    row_state,
)
from shiftcheck_shared.eligibility import can_complete
from shiftcheck_shared.schemas.common import ReviewStatus, TaskStatus
from shiftcheck_shared.schemas.submissions import ReviewEntryRead

log = structlog.get_logger()

REVIEW_TRANSITIONS: dict[ReviewStatus, set[ReviewStatus]] = {
    ReviewStatus.PENDING: {ReviewStatus.APPROVED, ReviewStatus.REWORK},
    ReviewStatus.REWORK: {ReviewStatus.PENDING},
    ReviewStatus.APPROVED: {ReviewStatus.REWORK},
}


def is_valid_transition(current: str, target: str) -> bool:
    return ReviewStatus(target) in REVIEW_TRANSITIONS.get(ReviewStatus(current), set())


def _record(
    session: AsyncSession,
    row: SubmissionTask,
    status: ReviewStatus,
    note: Optional[str],
    reviewer_id: Optional[uuid.UUID],
) -> None:
    session.add(
        ReviewEntry(
            org_id=row.org_id,
            submission_id=row.submission_id,
            task_id=row.task_id,
            review_status=status.value,
            note=note,
            reviewer_id=reviewer_id,
        )
    )


async def review_tasks(
    session: AsyncSession,
    submission: Submission,
    task_ids: Sequence[uuid.UUID],
    decision: ReviewStatus,
    note: Optional[str],
    reviewer_id: Optional[uuid.UUID] = None,
) -> list[uuid.UUID]:
    """Apply one review decision to a batch of tasks. Returns the ids that transitioned.

    Rework: note stored, rework count +1, task reopened (Incomplete).
    Approved: note cleared, rework count untouched.
    Tasks already in the target state are left as they are. One invalid
    transition rejects the whole batch.
    """
    decision = ReviewStatus(decision)
    if decision == ReviewStatus.PENDING:
        raise coded_error(
            422, INVALID_REVIEW_TRANSITION, "Pending is reached by resubmission only", task_ids
        )

    rows = {r.task_id: r for r in await get_rows(session, submission.id)}
    unknown = [t for t in task_ids if t not in rows]
    if unknown:
        raise HTTPException(status_code=404, detail="Task not found in submission")

    targets = [rows[t] for t in dict.fromkeys(task_ids) if rows[t].review_status != decision.value]
    invalid = [r.task_id for r in targets if not is_valid_transition(r.review_status, decision)]
    if invalid:
        raise coded_error(
            422,
            INVALID_REVIEW_TRANSITION,
            f"Cannot move {len(invalid)} task(s) to {decision.value}",
            task_ids=invalid,
        )

    for row in targets:
        row.review_status = decision.value
        if decision == ReviewStatus.REWORK:
            row.review_note = note
            row.rework_count += 1
            row.status = TaskStatus.INCOMPLETE.value
        else:
            row.review_note = None
        row.updated_at = _utcnow()
        session.add(row)
        _record(session, row, decision, note, reviewer_id)

    await session.flush()
    await recompute_submission_status(session, submission)

    log.info(
        "review.applied",
        submission_id=str(submission.id),
        decision=decision.value,
        transitioned=len(targets),
        requested=len(task_ids),
    )
    return [r.task_id for r in targets]


async def resubmit(
    session: AsyncSession,
    submission: Submission,
    actor_id: Optional[uuid.UUID] = None,
) -> tuple[list[uuid.UUID], list[uuid.UUID]]:
    """Move each Rework task that is now Complete and eligible back to Pending.

    Returns (resubmitted, still_in_rework).
    """
    moved: list[uuid.UUID] = []
    remaining: list[uuid.UUID] = []
    for row in await get_rows(session, submission.id):
        if row.review_status != ReviewStatus.REWORK.value:
            continue
        ready = row.status == TaskStatus.COMPLETE.value and can_complete(
            row_definition(row), row_state(row)
        )
        if not ready:
            remaining.append(row.task_id)
            continue
        row.review_status = ReviewStatus.PENDING.value
        row.updated_at = _utcnow()
        session.add(row)
        _record(session, row, ReviewStatus.PENDING, None, actor_id)
        moved.append(row.task_id)

    await session.flush()
    await recompute_submission_status(session, submission)
    log.info(
        "review.resubmitted",
        submission_id=str(submission.id),
        resubmitted=len(moved),
        still_rework=len(remaining),
    )
    return moved, remaining


async def list_history(
    session: AsyncSession,
    submission_id: uuid.UUID,
    task_id: Optional[uuid.UUID] = None,
) -> list[ReviewEntryRead]:
    stmt = select(ReviewEntry).where(ReviewEntry.submission_id == submission_id)
    if task_id:
        stmt = stmt.where(ReviewEntry.task_id == task_id)
    stmt = stmt.order_by(ReviewEntry.created_at)
    result = await session.execute(stmt)
    return [
        ReviewEntryRead(
            id=e.id,
            submission_id=e.submission_id,
            task_id=e.task_id,
            review_status=e.review_status,
            note=e.note,
            reviewer_id=e.reviewer_id,
            created_at=e.created_at,
        )
        for e in result.scalars().all()
    ]
