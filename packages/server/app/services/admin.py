"""
Administration service: locations, time blocks and checklist templates.

Template task lists are replaced wholesale on update. Existing submissions
are unaffected because their rows carry frozen definition snapshots.
"""

from __future__ import annotations

import uuid
from typing import Optional, Sequence

import structlog
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.location import Location, TimeBlock
from app.models.template import ChecklistTemplate, TemplateTask
from app.services.recurrence import get_location_or_404, template_read, time_block_read
from shiftcheck_shared.schemas.tasklists import (
    LocationCreate,
    LocationRead,
    TemplateCreate,
    TemplateRead,
    TemplateTaskIn,
    TemplateUpdate,
    TimeBlockCreate,
    TimeBlockRead,
)

log = structlog.get_logger()


def location_read(location: Location) -> LocationRead:
    return LocationRead(
        id=location.id, org_id=location.org_id, name=location.name, timezone=location.timezone
    )


# ---------------------------------------------------------------------------
# Locations & time blocks
# ---------------------------------------------------------------------------


async def list_locations(session: AsyncSession, org_id: uuid.UUID) -> list[LocationRead]:
    result = await session.execute(
        select(Location).where(Location.org_id == org_id).order_by(Location.name)
    )
    return [location_read(loc) for loc in result.scalars().all()]


async def create_location(
    session: AsyncSession, org_id: uuid.UUID, req: LocationCreate
) -> LocationRead:
    location = Location(org_id=org_id, name=req.name, timezone=req.timezone)
    session.add(location)
    await session.flush()
    log.info("admin.location_created", location_id=str(location.id), timezone=location.timezone)
    return location_read(location)


async def list_time_blocks(session: AsyncSession, org_id: uuid.UUID) -> list[TimeBlockRead]:
    result = await session.execute(
        select(TimeBlock).where(TimeBlock.org_id == org_id).order_by(TimeBlock.start_time)
    )
    return [time_block_read(b) for b in result.scalars().all()]


async def create_time_block(
    session: AsyncSession, org_id: uuid.UUID, req: TimeBlockCreate
) -> TimeBlockRead:
    block = TimeBlock(
        org_id=org_id, name=req.name, start_time=req.start_time, end_time=req.end_time
    )
    session.add(block)
    await session.flush()
    return time_block_read(block)


async def _check_time_block(
    session: AsyncSession, org_id: uuid.UUID, time_block_id: Optional[uuid.UUID]
) -> None:
    if time_block_id is None:
        return
    block = await session.get(TimeBlock, time_block_id)
    if not block or block.org_id != org_id:
        raise HTTPException(status_code=404, detail="Time block not found")


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


async def get_template_or_404(
    session: AsyncSession, template_id: uuid.UUID, org_id: uuid.UUID
) -> ChecklistTemplate:
    template = await session.get(ChecklistTemplate, template_id)
    if not template or template.org_id != org_id:
        raise HTTPException(status_code=404, detail="Template not found")
    return template


async def _template_tasks(session: AsyncSession, template_id: uuid.UUID) -> list[TemplateTask]:
    result = await session.execute(
        select(TemplateTask).where(TemplateTask.template_id == template_id)
    )
    return list(result.scalars().all())


async def _replace_tasks(
    session: AsyncSession,
    template: ChecklistTemplate,
    tasks: Sequence[TemplateTaskIn],
) -> None:
    for existing in await _template_tasks(session, template.id):
        await session.delete(existing)
    for position, t in enumerate(tasks):
        session.add(
            TemplateTask(
                template_id=template.id,
                org_id=template.org_id,
                title=t.title,
                category=t.category,
                input_type=t.input_type.value,
                min=t.min,
                max=t.max,
                photo_required=t.photo_required,
                note_required=t.note_required,
                allow_na=t.allow_na,
                priority=t.priority,
                position=position,
            )
        )
    await session.flush()


async def list_templates(
    session: AsyncSession, org_id: uuid.UUID, location_id: Optional[uuid.UUID] = None
) -> list[TemplateRead]:
    stmt = select(ChecklistTemplate).where(ChecklistTemplate.org_id == org_id)
    if location_id:
        stmt = stmt.where(ChecklistTemplate.location_id == location_id)
    templates = (await session.execute(stmt.order_by(ChecklistTemplate.name))).scalars().all()
    return [template_read(t, await _template_tasks(session, t.id)) for t in templates]


async def create_template(
    session: AsyncSession, org_id: uuid.UUID, req: TemplateCreate
) -> TemplateRead:
    await get_location_or_404(session, req.location_id, org_id)
    await _check_time_block(session, org_id, req.time_block_id)

    template = ChecklistTemplate(
        org_id=org_id,
        location_id=req.location_id,
        name=req.name,
        time_block_id=req.time_block_id,
        recurrence=list(req.recurrence),
        requires_approval=req.requires_approval,
        signoff_method=req.signoff_method.value,
        active=req.active,
    )
    session.add(template)
    await session.flush()
    await _replace_tasks(session, template, req.tasks)

    log.info("admin.template_created", template_id=str(template.id), tasks=len(req.tasks))
    return template_read(template, await _template_tasks(session, template.id))


async def update_template(
    session: AsyncSession, template: ChecklistTemplate, req: TemplateUpdate
) -> TemplateRead:
    data = req.model_dump(exclude_unset=True)

    if "time_block_id" in data:
        await _check_time_block(session, template.org_id, data["time_block_id"])
    tasks = data.pop("tasks", None)
    for key, value in data.items():
        # Only the time block may be cleared
        if value is None and key != "time_block_id":
            continue
        setattr(template, key, value)
    session.add(template)
    await session.flush()

    if tasks is not None:
        await _replace_tasks(session, template, req.tasks)

    log.info("admin.template_updated", template_id=str(template.id), fields=sorted(data))
    return template_read(template, await _template_tasks(session, template.id))
