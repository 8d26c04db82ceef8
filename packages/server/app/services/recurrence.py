"""
Recurrence resolution: which tasklists are due at a location on a given day.

`resolve_tasklists_for_day` is pure and deterministic; `load_tasklists_for_day`
and `get_tasklist_or_404` wrap it with database reads.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Iterable, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.location import Location, TimeBlock
from app.models.submission import Submission, SubmissionTask
from app.models.template import ChecklistTemplate, TemplateTask
from shiftcheck_shared.schemas.tasklists import (
    Tasklist,
    TasklistsForDay,
    TemplateRead,
    TimeBlockRead,
    task_definition_adapter,
)

log = structlog.get_logger()

DEFAULT_BLOCK_START = "00:00"


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------


def _zone(tz: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        log.warning("recurrence.unknown_timezone", timezone=tz, fallback="UTC")
        return ZoneInfo("UTC")


def weekday_index(date_iso: str | dt.date, tz: str) -> int:
    """Weekday (Sunday=0 .. Saturday=6) of a calendar date as observed in `tz`.

    The date is anchored at 12:00 UTC before conversion, so every zone within
    +/-12h observes the same calendar day.
    """
    day = dt.date.fromisoformat(date_iso) if isinstance(date_iso, str) else date_iso
    noon_utc = dt.datetime(day.year, day.month, day.day, 12, tzinfo=dt.timezone.utc)
    return noon_utc.astimezone(_zone(tz)).isoweekday() % 7


def today_in_tz(tz: str, now: Optional[dt.datetime] = None) -> dt.date:
    now = now or dt.datetime.now(dt.timezone.utc)
    return now.astimezone(_zone(tz)).date()


# ---------------------------------------------------------------------------
# Pure resolution
# ---------------------------------------------------------------------------


def _task_sort_key(task) -> tuple:
    return (task.priority, task.position, task.title, str(task.id))


def resolve_tasklists_for_day(
    templates: Iterable[TemplateRead],
    time_blocks: Iterable[TimeBlockRead],
    location_id: uuid.UUID,
    date_iso: str | dt.date,
    timezone: str,
) -> list[Tasklist]:
    """Materialize the tasklists due at `location_id` on `date_iso`.

    Inactive templates, templates for other locations and templates whose
    recurrence excludes the day are skipped. Ordered by time-block start
    (missing block sorts as 00:00), then template name.
    """
    today = weekday_index(date_iso, timezone)
    blocks = {str(b.id): b for b in time_blocks}

    tasklists = []
    for template in templates:
        if not template.active:
            continue
        if str(template.location_id) != str(location_id):
            continue
        if today not in template.recurrence:
            continue
        block = blocks.get(str(template.time_block_id)) if template.time_block_id else None
        tasks = sorted((t.model_copy(deep=True) for t in template.tasks), key=_task_sort_key)
        tasklists.append(
            Tasklist(
                id=template.id,
                location_id=template.location_id,
                name=template.name,
                time_block_id=template.time_block_id,
                time_block=block.model_copy() if block else None,
                recurrence=list(template.recurrence),
                requires_approval=template.requires_approval,
                signoff_method=template.signoff_method,
                tasks=tasks,
            )
        )

    def _key(tl: Tasklist) -> tuple:
        start = tl.time_block.start_time if tl.time_block else DEFAULT_BLOCK_START
        return (start, tl.name, str(tl.id))

    return sorted(tasklists, key=_key)


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------


def task_definition_from_row(row: TemplateTask):
    return task_definition_adapter.validate_python(
        {
            "id": row.id,
            "title": row.title,
            "category": row.category,
            "input_type": row.input_type,
            "min": row.min,
            "max": row.max,
            "photo_required": row.photo_required,
            "note_required": row.note_required,
            "allow_na": row.allow_na,
            "priority": row.priority,
            "position": row.position,
        }
    )


def template_read(template: ChecklistTemplate, tasks: Sequence[TemplateTask]) -> TemplateRead:
    return TemplateRead(
        id=template.id,
        location_id=template.location_id,
        name=template.name,
        time_block_id=template.time_block_id,
        recurrence=list(template.recurrence or []),
        requires_approval=template.requires_approval,
        signoff_method=template.signoff_method,
        active=template.active,
        tasks=sorted((task_definition_from_row(t) for t in tasks), key=_task_sort_key),
    )


def time_block_read(block: TimeBlock) -> TimeBlockRead:
    return TimeBlockRead(
        id=block.id, name=block.name, start_time=block.start_time, end_time=block.end_time
    )


# ---------------------------------------------------------------------------
# Database-backed wrappers
# ---------------------------------------------------------------------------


async def get_location_or_404(
    session: AsyncSession, location_id: uuid.UUID, org_id: uuid.UUID
) -> Location:
    location = await session.get(Location, location_id)
    if not location or location.org_id != org_id:
        raise HTTPException(status_code=404, detail="Location not found")
    return location


async def load_templates(
    session: AsyncSession,
    org_id: uuid.UUID,
    location_id: Optional[uuid.UUID] = None,
    template_ids: Optional[Sequence[uuid.UUID]] = None,
) -> list[TemplateRead]:
    stmt = select(ChecklistTemplate).where(ChecklistTemplate.org_id == org_id)
    if location_id:
        stmt = stmt.where(ChecklistTemplate.location_id == location_id)
    if template_ids is not None:
        stmt = stmt.where(ChecklistTemplate.id.in_(list(template_ids)))
    templates = list((await session.execute(stmt)).scalars().all())
    if not templates:
        return []

    result = await session.execute(
        select(TemplateTask).where(TemplateTask.template_id.in_([t.id for t in templates]))
    )
    tasks_by_template: dict[uuid.UUID, list[TemplateTask]] = {}
    for task in result.scalars().all():
        tasks_by_template.setdefault(task.template_id, []).append(task)

    return [template_read(t, tasks_by_template.get(t.id, [])) for t in templates]


async def load_time_blocks(session: AsyncSession, org_id: uuid.UUID) -> list[TimeBlockRead]:
    result = await session.execute(select(TimeBlock).where(TimeBlock.org_id == org_id))
    return [time_block_read(b) for b in result.scalars().all()]


async def load_tasklists_for_day(
    session: AsyncSession,
    org_id: uuid.UUID,
    location: Location,
    on_date: Optional[dt.date] = None,
) -> TasklistsForDay:
    on_date = on_date or today_in_tz(location.timezone)
    templates = await load_templates(session, org_id, location_id=location.id)
    blocks = await load_time_blocks(session, org_id)
    tasklists = resolve_tasklists_for_day(
        templates, blocks, location.id, on_date, location.timezone
    )
    log.debug(
        "recurrence.resolved",
        location_id=str(location.id),
        date=on_date.isoformat(),
        count=len(tasklists),
    )
    return TasklistsForDay(
        location_id=location.id,
        date=on_date.isoformat(),
        timezone=location.timezone,
        weekday=weekday_index(on_date, location.timezone),
        tasklists=tasklists,
    )


async def get_tasklist_or_404(
    session: AsyncSession,
    org_id: uuid.UUID,
    location: Location,
    tasklist_id: uuid.UUID,
    on_date: dt.date,
) -> Tasklist:
    """The tasklist a worker acts on for one day.

    Once a submission exists for the day, its task definitions come from the
    snapshots frozen on its rows, so later template edits (or deactivation)
    do not alter work already started. Otherwise the tasklist must be due
    on that day.
    """
    result = await session.execute(
        select(Submission).where(
            Submission.tasklist_id == tasklist_id,
            Submission.location_id == location.id,
            Submission.date == on_date,
        )
    )
    submission = result.scalar_one_or_none()
    if submission is not None and submission.org_id == org_id:
        templates = await load_templates(session, org_id, template_ids=[tasklist_id])
        rows = (
            await session.execute(
                select(SubmissionTask).where(SubmissionTask.submission_id == submission.id)
            )
        ).scalars().all()
        if templates and rows:
            template = templates[0]
            blocks = {str(b.id): b for b in await load_time_blocks(session, org_id)}
            tasks = sorted(
                (task_definition_adapter.validate_python(r.definition) for r in rows),
                key=_task_sort_key,
            )
            return Tasklist(
                id=template.id,
                location_id=location.id,
                name=template.name,
                time_block_id=template.time_block_id,
                time_block=blocks.get(str(template.time_block_id)),
                recurrence=template.recurrence,
                requires_approval=template.requires_approval,
                signoff_method=template.signoff_method,
                tasks=tasks,
            )

    day = await load_tasklists_for_day(session, org_id, location, on_date)
    for tasklist in day.tasklists:
        if tasklist.id == tasklist_id:
            return tasklist
    raise HTTPException(status_code=404, detail="Tasklist not scheduled for this date")
