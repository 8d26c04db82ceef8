"""
Tasklist endpoints (kiosk-facing): resolve today's tasklists, read working
state, complete a task, sign a tasklist off.

- Completion and signoff are PIN-gated per request; a wrong PIN is 403
  PIN_REJECTED with nothing written.
- Dates default to "today" in the location's timezone.
- A change cue is broadcast after every committed write.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthenticatedUser, require_member
from app.core.database import get_session
from app.core.events import TABLE_SUBMISSION_TASKS, TABLE_SUBMISSIONS, broadcast_change
from app.services.recurrence import (
    get_location_or_404,
    get_tasklist_or_404,
    load_tasklists_for_day,
    today_in_tz,
)
from app.services.submissions import complete_task, get_working_state, sign_off
from shiftcheck_shared.schemas.submissions import (
    CompleteTaskRequest,
    SignoffRequest,
    SubmissionRead,
    WorkingStateRead,
)
from shiftcheck_shared.schemas.tasklists import TasklistsForDay

router = APIRouter()


@router.get("/{location_id}/tasklists", response_model=TasklistsForDay)
async def list_tasklists_endpoint(
    orgSlug: str,
    location_id: uuid.UUID,
    date: Optional[dt.date] = Query(None, description="ISO date; defaults to today at the location"),
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    """Tasklists due at this location on the given day, in display order."""
    location = await get_location_or_404(session, location_id, auth.org_id)
    return await load_tasklists_for_day(session, auth.org_id, location, date)


@router.get("/{location_id}/tasklists/{tasklist_id}/state", response_model=WorkingStateRead)
async def get_state_endpoint(
    orgSlug: str,
    location_id: uuid.UUID,
    tasklist_id: uuid.UUID,
    date: Optional[dt.date] = Query(None),
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    """Authoritative submission rows for one tasklist on one day."""
    location = await get_location_or_404(session, location_id, auth.org_id)
    on_date = date or today_in_tz(location.timezone)
    tasklist = await get_tasklist_or_404(session, auth.org_id, location, tasklist_id, on_date)
    return await get_working_state(session, auth.org_id, tasklist, location.id, on_date)


@router.post(
    "/{location_id}/tasklists/{tasklist_id}/tasks/{task_id}/complete",
    response_model=WorkingStateRead,
)
async def complete_task_endpoint(
    orgSlug: str,
    location_id: uuid.UUID,
    tasklist_id: uuid.UUID,
    task_id: uuid.UUID,
    body: CompleteTaskRequest,
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    """Complete one task (422 TASK_NOT_ELIGIBLE, 403 PIN_REJECTED)."""
    location = await get_location_or_404(session, location_id, auth.org_id)
    on_date = body.date or today_in_tz(location.timezone)
    tasklist = await get_tasklist_or_404(session, auth.org_id, location, tasklist_id, on_date)

    state = await complete_task(
        session, auth.org_id, tasklist, location.id, task_id, body, on_date
    )
    await session.commit()
    await broadcast_change(auth.org_id, [TABLE_SUBMISSION_TASKS, TABLE_SUBMISSIONS], location.id)
    return state


@router.post(
    "/{location_id}/tasklists/{tasklist_id}/signoff",
    response_model=SubmissionRead,
)
async def signoff_endpoint(
    orgSlug: str,
    location_id: uuid.UUID,
    tasklist_id: uuid.UUID,
    body: SignoffRequest,
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    """Sign the tasklist off (422 TASKLIST_INCOMPLETE, 403 PIN_REJECTED)."""
    location = await get_location_or_404(session, location_id, auth.org_id)
    on_date = body.date or today_in_tz(location.timezone)
    tasklist = await get_tasklist_or_404(session, auth.org_id, location, tasklist_id, on_date)

    submission = await sign_off(
        session,
        auth.org_id,
        tasklist,
        location.id,
        body,
        on_date,
        session_user_id=auth.user_id,
    )
    await session.commit()
    await broadcast_change(auth.org_id, [TABLE_SUBMISSIONS, TABLE_SUBMISSION_TASKS], location.id)
    return submission
