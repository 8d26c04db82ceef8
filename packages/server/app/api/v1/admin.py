"""
Administration endpoints: locations, time blocks, checklist templates.

Reads are open to any member (kiosks list locations); writes require the
administrator role and broadcast a change cue so kiosks re-resolve.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthenticatedUser, require_admin, require_member
from app.core.database import get_session
from app.core.events import (
    TABLE_LOCATIONS,
    TABLE_TEMPLATES,
    TABLE_TIME_BLOCKS,
    broadcast_change,
)
from app.services.admin import (
    create_location,
    create_template,
    create_time_block,
    get_template_or_404,
    list_locations,
    list_templates,
    list_time_blocks,
    update_template,
)
from shiftcheck_shared.schemas.tasklists import (
    LocationCreate,
    LocationRead,
    TemplateCreate,
    TemplateRead,
    TemplateUpdate,
    TimeBlockCreate,
    TimeBlockRead,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------


@router.get("/locations", response_model=List[LocationRead])
async def list_locations_endpoint(
    orgSlug: str,
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    return await list_locations(session, auth.org_id)


@router.post("/locations", response_model=LocationRead, status_code=201)
async def create_location_endpoint(
    orgSlug: str,
    body: LocationCreate,
    auth: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    location = await create_location(session, auth.org_id, body)
    await session.commit()
    await broadcast_change(auth.org_id, [TABLE_LOCATIONS], location.id)
    return location


# ---------------------------------------------------------------------------
# Time blocks
# ---------------------------------------------------------------------------


@router.get("/time-blocks", response_model=List[TimeBlockRead])
async def list_time_blocks_endpoint(
    orgSlug: str,
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    return await list_time_blocks(session, auth.org_id)


@router.post("/time-blocks", response_model=TimeBlockRead, status_code=201)
async def create_time_block_endpoint(
    orgSlug: str,
    body: TimeBlockCreate,
    auth: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    block = await create_time_block(session, auth.org_id, body)
    await session.commit()
    await broadcast_change(auth.org_id, [TABLE_TIME_BLOCKS])
    return block


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


@router.get("/templates", response_model=List[TemplateRead])
async def list_templates_endpoint(
    orgSlug: str,
    location_id: Optional[uuid.UUID] = None,
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    return await list_templates(session, auth.org_id, location_id)


@router.post("/templates", response_model=TemplateRead, status_code=201)
async def create_template_endpoint(
    orgSlug: str,
    body: TemplateCreate,
    auth: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    template = await create_template(session, auth.org_id, body)
    await session.commit()
    await broadcast_change(auth.org_id, [TABLE_TEMPLATES], template.location_id)
    return template


@router.patch("/templates/{template_id}", response_model=TemplateRead)
async def update_template_endpoint(
    orgSlug: str,
    template_id: uuid.UUID,
    body: TemplateUpdate,
    auth: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Update metadata, `active`, `recurrence`, or replace the task list."""
    template = await get_template_or_404(session, template_id, auth.org_id)
    updated = await update_template(session, template, body)
    await session.commit()
    await broadcast_change(auth.org_id, [TABLE_TEMPLATES], updated.location_id)
    return updated
