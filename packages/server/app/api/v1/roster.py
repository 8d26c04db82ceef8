"""
Actor roster endpoints.

- POST /pin/verify: identify the actor behind a PIN ({"actor": null} when rejected)
- Member administration (administrator role): register with PIN, change PIN,
  deactivate
"""

from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthenticatedUser, require_admin, require_member
from app.core.database import get_session
from app.core.events import TABLE_MEMBERSHIPS, broadcast_change
from app.services.roster import (
    change_pin,
    deactivate_member,
    list_members,
    register_member,
    validate_pin,
)
from shiftcheck_shared.schemas.roster import (
    MemberCreate,
    MemberRead,
    PinUpdate,
    PinVerifyRequest,
    PinVerifyResponse,
)

router = APIRouter()


@router.post("/pin/verify", response_model=PinVerifyResponse)
async def verify_pin_endpoint(
    orgSlug: str,
    body: PinVerifyRequest,
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    """A rejected PIN is a normal outcome (200 with actor null), never an error."""
    return PinVerifyResponse(actor=await validate_pin(session, auth.org_id, body.pin))


@router.get("/members", response_model=List[MemberRead])
async def list_members_endpoint(
    orgSlug: str,
    auth: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return await list_members(session, auth.org_id)


@router.post("/members", response_model=MemberRead, status_code=201)
async def register_member_endpoint(
    orgSlug: str,
    body: MemberCreate,
    auth: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Add a member with a PIN (409 when the PIN is already used in this org)."""
    member = await register_member(session, auth.org_id, body)
    await session.commit()
    await broadcast_change(auth.org_id, [TABLE_MEMBERSHIPS])
    return member


@router.put("/members/{user_id}/pin", status_code=204)
async def change_pin_endpoint(
    orgSlug: str,
    user_id: uuid.UUID,
    body: PinUpdate,
    auth: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    await change_pin(session, auth.org_id, user_id, body.pin)
    await session.commit()
    await broadcast_change(auth.org_id, [TABLE_MEMBERSHIPS])


@router.post("/members/{user_id}/deactivate", status_code=204)
async def deactivate_member_endpoint(
    orgSlug: str,
    user_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    await deactivate_member(session, auth.org_id, user_id)
    await session.commit()
    await broadcast_change(auth.org_id, [TABLE_MEMBERSHIPS])
