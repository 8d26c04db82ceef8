"""
Submission lifecycle: find-or-create, idempotent task upserts, PIN-gated
completion and signoff, aggregate status and read accessors.

Handles:
- One Submission per (tasklist, location, date), created with one
  SubmissionTask per task definition snapshot
- Task completion: eligibility gate, then PIN gate, then write
- Signoff: every task Complete (or N/A) and eligible, then PIN gate, then stamp
- Aggregate review status recomputed after every task-level change
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Iterable, Mapping, Optional, Sequence

import structlog
from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import TASK_LOCKED, TASK_NOT_ELIGIBLE, TASKLIST_INCOMPLETE, coded_error
from app.models.base import _utcnow
from app.models.submission import Submission, SubmissionTask
from app.services.roster import require_actor
from shiftcheck_shared.eligibility import (
    can_complete,
    deserialize_value,
    ineligibility_reason,
    is_ready_for_signoff,
    serialize_value,
)
from shiftcheck_shared.schemas.common import ReviewStatus, TaskStatus
from shiftcheck_shared.schemas.roster import ActorRead
from shiftcheck_shared.schemas.submissions import (
    CompleteTaskRequest,
    SignoffRequest,
    SubmissionFilters,
    SubmissionRead,
    SubmissionTaskRead,
    TaskDraft,
    WorkingStateRead,
)
from shiftcheck_shared.schemas.tasklists import Tasklist, task_definition_adapter

log = structlog.get_logger()

# Fields a task upsert may write
UPSERT_FIELDS = {
    "status",
    "review_status",
    "na",
    "value",
    "note",
    "photos",
    "rework_count",
    "review_note",
    "submitted_by",
}


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------


def row_definition(row: SubmissionTask):
    return task_definition_adapter.validate_python(row.definition)


def row_state(row: SubmissionTask) -> TaskDraft:
    """The persisted row as an eligibility state (numeric values parsed back)."""
    return TaskDraft(
        na=row.na,
        value=deserialize_value(row_definition(row), row.value),
        note=row.note or "",
        photos=list(row.photos or []),
    )


def _row_sort_key(row: SubmissionTask) -> tuple:
    d = row.definition or {}
    return (d.get("priority", 3), d.get("position", 0), d.get("title", ""), str(row.task_id))


def task_read(row: SubmissionTask) -> SubmissionTaskRead:
    return SubmissionTaskRead(
        submission_id=row.submission_id,
        task_id=row.task_id,
        status=row.status,
        review_status=row.review_status,
        na=row.na,
        value=row.value,
        note=row.note or "",
        photos=list(row.photos or []),
        rework_count=row.rework_count,
        review_note=row.review_note,
        submitted_by=row.submitted_by,
        definition=row.definition or None,
        updated_at=row.updated_at,
    )


def submission_read(submission: Submission, rows: Sequence[SubmissionTask]) -> SubmissionRead:
    return SubmissionRead(
        id=submission.id,
        org_id=submission.org_id,
        tasklist_id=submission.tasklist_id,
        location_id=submission.location_id,
        date=submission.date,
        status=submission.status,
        signed_by=submission.signed_by,
        signed_by_id=submission.signed_by_id,
        submitted_by=submission.submitted_by,
        signed_at=submission.signed_at,
        tasks=[task_read(r) for r in sorted(rows, key=_row_sort_key)],
        created_at=submission.created_at,
        updated_at=submission.updated_at,
    )


async def get_rows(
    session: AsyncSession, submission_id: uuid.UUID
) -> list[SubmissionTask]:
    result = await session.execute(
        select(SubmissionTask).where(SubmissionTask.submission_id == submission_id)
    )
    return list(result.scalars().all())


async def get_submission_or_404(
    session: AsyncSession, submission_id: uuid.UUID, org_id: uuid.UUID
) -> Submission:
    submission = await session.get(Submission, submission_id)
    if not submission or submission.org_id != org_id:
        raise HTTPException(status_code=404, detail="Submission not found")
    return submission


async def load_submission_read(
    session: AsyncSession, submission: Submission
) -> SubmissionRead:
    return submission_read(submission, await get_rows(session, submission.id))


# ---------------------------------------------------------------------------
# Aggregate status
# ---------------------------------------------------------------------------


def compute_aggregate_status(review_statuses: Iterable[str]) -> ReviewStatus:
    """Rework if any task is in Rework; Approved iff non-empty and all Approved; else Pending."""
    statuses = [ReviewStatus(s) for s in review_statuses]
    if any(s == ReviewStatus.REWORK for s in statuses):
        return ReviewStatus.REWORK
    if statuses and all(s == ReviewStatus.APPROVED for s in statuses):
        return ReviewStatus.APPROVED
    return ReviewStatus.PENDING


async def recompute_submission_status(
    session: AsyncSession, submission: Submission
) -> ReviewStatus:
    rows = await get_rows(session, submission.id)
    status = compute_aggregate_status(r.review_status for r in rows)
    if submission.status != status.value:
        log.info(
            "submission.status_changed",
            submission_id=str(submission.id),
            previous=submission.status,
            status=status.value,
        )
        submission.status = status.value
        session.add(submission)
        await session.flush()
    return status


# ---------------------------------------------------------------------------
# Find-or-create & upsert
# ---------------------------------------------------------------------------


async def _lookup_submission_id(
    session: AsyncSession,
    tasklist_id: uuid.UUID,
    location_id: uuid.UUID,
    on_date: dt.date,
) -> Optional[uuid.UUID]:
    result = await session.execute(
        select(Submission.id).where(
            Submission.tasklist_id == tasklist_id,
            Submission.location_id == location_id,
            Submission.date == on_date,
        )
    )
    return result.scalar_one_or_none()


async def find_or_create_submission(
    session: AsyncSession,
    org_id: uuid.UUID,
    tasklist: Tasklist,
    location_id: uuid.UUID,
    on_date: dt.date,
) -> uuid.UUID:
    """Return the id of the unique Submission for the natural key, creating it if absent.

    The insert commits immediately. A concurrent creator losing the race on the
    unique constraint rolls back and re-reads the winner's row.
    """
    existing = await _lookup_submission_id(session, tasklist.id, location_id, on_date)
    if existing is not None:
        return existing

    submission = Submission(
        org_id=org_id,
        tasklist_id=tasklist.id,
        location_id=location_id,
        date=on_date,
        status=ReviewStatus.PENDING.value,
    )
    session.add(submission)
    for task in tasklist.tasks:
        session.add(
            SubmissionTask(
                submission_id=submission.id,
                task_id=task.id,
                org_id=org_id,
                definition=task.model_dump(mode="json"),
            )
        )
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        existing = await _lookup_submission_id(session, tasklist.id, location_id, on_date)
        if existing is None:
            raise
        log.info(
            "submission.create_conflict",
            tasklist_id=str(tasklist.id),
            location_id=str(location_id),
            date=on_date.isoformat(),
        )
        return existing

    log.info(
        "submission.created",
        submission_id=str(submission.id),
        tasklist_id=str(tasklist.id),
        location_id=str(location_id),
        date=on_date.isoformat(),
        tasks=len(tasklist.tasks),
    )
    return submission.id


async def upsert_submission_task(
    session: AsyncSession,
    submission_id: uuid.UUID,
    task_id: uuid.UUID,
    payload: Mapping,
    *,
    org_id: Optional[uuid.UUID] = None,
    definition: Optional[dict] = None,
) -> SubmissionTask:
    """Write only the fields present in `payload` to the (submission, task) row.

    Repeating the same call leaves the row unchanged apart from `updated_at`.
    """
    unknown = set(payload) - UPSERT_FIELDS
    if unknown:
        raise ValueError(f"Unknown submission task fields: {sorted(unknown)}")

    row = await session.get(SubmissionTask, (submission_id, task_id))
    if row is None:
        if org_id is None:
            raise HTTPException(status_code=404, detail="Task not found in submission")
        row = SubmissionTask(
            submission_id=submission_id,
            task_id=task_id,
            org_id=org_id,
            definition=definition or {},
        )
    for key, value in payload.items():
        if key == "photos":
            value = list(value or [])
        setattr(row, key, value)
    row.updated_at = _utcnow()
    session.add(row)
    await session.flush()
    return row


async def append_photo(
    session: AsyncSession, submission_id: uuid.UUID, task_id: uuid.UUID, path: str
) -> SubmissionTask:
    """Read-merge-write one evidence path onto a task's ordered photo list."""
    row = await session.get(SubmissionTask, (submission_id, task_id))
    if row is None:
        raise HTTPException(status_code=404, detail="Task not found in submission")
    photos = list(row.photos or [])
    if path not in photos:
        photos.append(path)
    return await upsert_submission_task(session, submission_id, task_id, {"photos": photos})


# ---------------------------------------------------------------------------
# Worker operations
# ---------------------------------------------------------------------------


def _task_or_404(tasklist: Tasklist, task_id: uuid.UUID):
    task = tasklist.task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found in tasklist")
    return task


def _na_refused(task, draft: TaskDraft) -> bool:
    return draft.na and not task.allow_na


def _is_locked(current: Optional[SubmissionTask]) -> bool:
    return (
        current is not None
        and current.status == TaskStatus.COMPLETE.value
        and current.review_status != ReviewStatus.REWORK.value
    )


def _completed_payload(task, draft: TaskDraft, actor: ActorRead, current: Optional[SubmissionTask]) -> dict:
    # A task sent back for rework stays in Rework until the worker resubmits
    keep_rework = current is not None and current.review_status == ReviewStatus.REWORK.value
    return {
        "status": TaskStatus.COMPLETE.value,
        "na": draft.na,
        "value": serialize_value(task, draft),
        "note": draft.note or "",
        "photos": draft.photos,
        "submitted_by": actor.user_id,
        "review_status": ReviewStatus.REWORK.value if keep_rework else ReviewStatus.PENDING.value,
    }


async def complete_task(
    session: AsyncSession,
    org_id: uuid.UUID,
    tasklist: Tasklist,
    location_id: uuid.UUID,
    task_id: uuid.UUID,
    req: CompleteTaskRequest,
    on_date: dt.date,
) -> WorkingStateRead:
    """Mark one task Complete: lock, eligibility, then PIN, then write. No write on refusal.

    A Complete task is locked unless a reviewer sent it back for rework.
    """
    task = _task_or_404(tasklist, task_id)
    draft = req.draft

    existing_id = await _lookup_submission_id(session, tasklist.id, location_id, on_date)
    current = await session.get(SubmissionTask, (existing_id, task.id)) if existing_id else None
    if _is_locked(current):
        log.info("task.locked", task_id=str(task_id), review_status=current.review_status)
        raise coded_error(409, TASK_LOCKED, "Task is already complete", task_ids=[task_id])

    reason = "N/A is not allowed for this task" if _na_refused(task, draft) else ineligibility_reason(task, draft)
    if reason is not None:
        log.info("task.not_eligible", task_id=str(task_id), reason=reason)
        raise coded_error(422, TASK_NOT_ELIGIBLE, reason, task_ids=[task_id])

    actor = await require_actor(session, org_id, req.pin)

    submission_id = await find_or_create_submission(session, org_id, tasklist, location_id, on_date)
    if current is None:
        current = await session.get(SubmissionTask, (submission_id, task.id))
    await upsert_submission_task(
        session,
        submission_id,
        task.id,
        _completed_payload(task, draft, actor, current),
        org_id=org_id,
        definition=task.model_dump(mode="json"),
    )
    submission = await session.get(Submission, submission_id)
    await recompute_submission_status(session, submission)

    log.info(
        "task.completed",
        submission_id=str(submission_id),
        task_id=str(task.id),
        actor=str(actor.user_id),
        na=draft.na,
    )
    return await get_working_state(session, org_id, tasklist, location_id, on_date)


async def sign_off(
    session: AsyncSession,
    org_id: uuid.UUID,
    tasklist: Tasklist,
    location_id: uuid.UUID,
    req: SignoffRequest,
    on_date: dt.date,
    session_user_id: Optional[uuid.UUID] = None,
) -> SubmissionRead:
    """Sign the day's tasklist off once every task is Complete (or N/A) and eligible.

    Persisted rows take precedence; N/A drafts sent with the request cover tasks
    never persisted. Review statuses are left untouched.
    """
    existing_id = await _lookup_submission_id(session, tasklist.id, location_id, on_date)
    rows = {r.task_id: r for r in await get_rows(session, existing_id)} if existing_id else {}

    na_drafts: dict[uuid.UUID, TaskDraft] = {}
    missing = []
    for task in tasklist.tasks:
        row = rows.get(task.id)
        if row is not None and is_ready_for_signoff(task, row_state(row), row.status):
            continue
        draft = req.drafts.get(task.id)
        if draft is not None and draft.na and task.allow_na and can_complete(task, draft):
            na_drafts[task.id] = draft
            continue
        missing.append(task.id)

    if missing:
        log.info("signoff.incomplete", tasklist_id=str(tasklist.id), missing=len(missing))
        raise coded_error(
            422,
            TASKLIST_INCOMPLETE,
            f"{len(missing)} task(s) are not complete",
            task_ids=missing,
        )

    actor = await require_actor(session, org_id, req.pin)

    submission_id = await find_or_create_submission(session, org_id, tasklist, location_id, on_date)
    for task_id, draft in na_drafts.items():
        task = tasklist.task(task_id)
        current = await session.get(SubmissionTask, (submission_id, task_id))
        await upsert_submission_task(
            session,
            submission_id,
            task_id,
            _completed_payload(task, draft, actor, current),
            org_id=org_id,
            definition=task.model_dump(mode="json"),
        )

    submission = await session.get(Submission, submission_id)
    if submission.signed_at is not None:
        log.warning(
            "signoff.overwritten",
            submission_id=str(submission_id),
            previous_signer=str(submission.signed_by_id),
            signer=str(actor.user_id),
        )
    submission.signed_by = actor.display_name
    submission.signed_by_id = actor.user_id
    submission.submitted_by = session_user_id or actor.user_id
    submission.signed_at = _utcnow()
    session.add(submission)
    await session.flush()
    await recompute_submission_status(session, submission)

    log.info("signoff.completed", submission_id=str(submission_id), actor=str(actor.user_id))
    return await load_submission_read(session, submission)


# ---------------------------------------------------------------------------
# Read accessors
# ---------------------------------------------------------------------------


async def get_working_state(
    session: AsyncSession,
    org_id: uuid.UUID,
    tasklist: Tasklist,
    location_id: uuid.UUID,
    on_date: dt.date,
) -> WorkingStateRead:
    submission_id = await _lookup_submission_id(session, tasklist.id, location_id, on_date)
    if submission_id is None:
        return WorkingStateRead(tasklist_id=tasklist.id, location_id=location_id, date=on_date)

    submission = await session.get(Submission, submission_id)
    rows = await get_rows(session, submission_id)
    return WorkingStateRead(
        tasklist_id=tasklist.id,
        location_id=location_id,
        date=on_date,
        submission_id=submission.id,
        submission_status=submission.status,
        signed_by=submission.signed_by,
        tasks=[task_read(r) for r in sorted(rows, key=_row_sort_key)],
    )


def _row_matches(row: SubmissionTask, filters: SubmissionFilters) -> bool:
    if filters.category and (row.definition or {}).get("category") != filters.category:
        return False
    if filters.min_rework_count is not None and row.rework_count < filters.min_rework_count:
        return False
    if filters.has_photo is not None and bool(row.photos) != filters.has_photo:
        return False
    if filters.has_note is not None and bool((row.note or "").strip()) != filters.has_note:
        return False
    return True


def _task_filters_active(filters: SubmissionFilters) -> bool:
    return any(
        v is not None and v != ""
        for v in (filters.category, filters.min_rework_count, filters.has_photo, filters.has_note)
    )


async def list_submissions(
    session: AsyncSession,
    org_id: uuid.UUID,
    filters: SubmissionFilters,
    *,
    offset: int = 0,
    limit: int = 50,
) -> list[SubmissionRead]:
    """Submissions for the manager dashboard, newest first.

    Task-level filters (category, rework count, photo, note) narrow the tasks
    returned and drop submissions with no matching task.
    """
    stmt = select(Submission).where(Submission.org_id == org_id)
    if filters.date_from:
        stmt = stmt.where(Submission.date >= filters.date_from)
    if filters.date_to:
        stmt = stmt.where(Submission.date <= filters.date_to)
    if filters.location_id:
        stmt = stmt.where(Submission.location_id == filters.location_id)
    if filters.status:
        stmt = stmt.where(Submission.status == filters.status.value)
    if filters.employee:
        stmt = stmt.where(Submission.signed_by.ilike(f"%{filters.employee}%"))
    stmt = stmt.order_by(Submission.date.desc(), Submission.created_at.desc())
    submissions = list((await session.execute(stmt)).scalars().all())
    if not submissions:
        return []

    result = await session.execute(
        select(SubmissionTask).where(
            SubmissionTask.submission_id.in_([s.id for s in submissions])
        )
    )
    rows_by_submission: dict[uuid.UUID, list[SubmissionTask]] = {}
    for row in result.scalars().all():
        rows_by_submission.setdefault(row.submission_id, []).append(row)

    narrowing = _task_filters_active(filters)
    reads = []
    for submission in submissions:
        rows = rows_by_submission.get(submission.id, [])
        if narrowing:
            rows = [r for r in rows if _row_matches(r, filters)]
            if not rows:
                continue
        reads.append(submission_read(submission, rows))
    return reads[offset:offset + limit]
