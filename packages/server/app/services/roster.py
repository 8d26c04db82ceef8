"""
Actor roster and the PIN authorization gate.

PINs are stored as a keyed HMAC-SHA256 digest so validating one is a single
indexed equality lookup. A wrong PIN is a business outcome (None), never an
exception; callers that must refuse the action use `require_actor`.
PINs are never logged.
"""

from __future__ import annotations

import hashlib
import hmac
import uuid
from typing import Optional

import structlog
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.auth import hash_password
from app.core.config import get_settings
from app.core.errors import PIN_REJECTED, coded_error
from app.models.membership import Membership
from app.models.user import User
from shiftcheck_shared.schemas.roster import ActorRead, MemberCreate, MemberRead

log = structlog.get_logger()
settings = get_settings()


# ---------------------------------------------------------------------------
# PIN digest & policy
# ---------------------------------------------------------------------------


def pin_digest(pin: str) -> str:
    return hmac.new(settings.secret_key.encode(), pin.encode(), hashlib.sha256).hexdigest()


def is_well_formed_pin(pin: str) -> bool:
    return (
        pin.isdigit()
        and pin.isascii()
        and settings.pin_min_length <= len(pin) <= settings.pin_max_length
    )


def _actor(membership: Membership) -> ActorRead:
    return ActorRead(
        user_id=membership.user_id,
        display_name=membership.display_name,
        role=membership.role,
    )


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


async def validate_pin(
    session: AsyncSession, org_id: uuid.UUID, pin: str
) -> Optional[ActorRead]:
    """Return the active actor in the tenant whose PIN matches exactly, else None."""
    if not pin or not is_well_formed_pin(pin):
        log.info("pin.rejected", org_id=str(org_id), reason="malformed")
        return None

    result = await session.execute(
        select(Membership).where(
            Membership.org_id == org_id,
            Membership.pin_digest == pin_digest(pin),
        )
    )
    membership = result.scalar_one_or_none()
    if membership is None:
        log.info("pin.rejected", org_id=str(org_id), reason="no_match")
        return None
    if not membership.is_active:
        log.info("pin.rejected", org_id=str(org_id), reason="inactive")
        return None

    log.info("pin.accepted", org_id=str(org_id), user_id=str(membership.user_id))
    return _actor(membership)


async def require_actor(session: AsyncSession, org_id: uuid.UUID, pin: str) -> ActorRead:
    """Gate a write: 403 PIN_REJECTED unless the PIN identifies an active actor."""
    actor = await validate_pin(session, org_id, pin)
    if actor is None:
        raise coded_error(403, PIN_REJECTED, "PIN not recognised")
    return actor


# ---------------------------------------------------------------------------
# Roster administration
# ---------------------------------------------------------------------------


async def _ensure_pin_available(
    session: AsyncSession, org_id: uuid.UUID, pin: str, user_id: Optional[uuid.UUID] = None
) -> str:
    if not is_well_formed_pin(pin):
        raise HTTPException(
            status_code=422,
            detail=(
                f"PIN must be {settings.pin_min_length}-{settings.pin_max_length} digits"
            ),
        )
    digest = pin_digest(pin)
    result = await session.execute(
        select(Membership).where(Membership.org_id == org_id, Membership.pin_digest == digest)
    )
    holder = result.scalar_one_or_none()
    if holder is not None and holder.user_id != user_id:
        raise HTTPException(status_code=409, detail="PIN already in use")
    return digest


async def get_membership_or_404(
    session: AsyncSession, org_id: uuid.UUID, user_id: uuid.UUID
) -> Membership:
    membership = await session.get(Membership, (user_id, org_id))
    if membership is None:
        raise HTTPException(status_code=404, detail="Member not found")
    return membership


async def list_members(session: AsyncSession, org_id: uuid.UUID) -> list[MemberRead]:
    result = await session.execute(
        select(User, Membership)
        .join(Membership, Membership.user_id == User.id)
        .where(Membership.org_id == org_id)
        .order_by(Membership.display_name)
    )
    return [
        MemberRead(
            user_id=user.id,
            email=user.email,
            display_name=m.display_name,
            role=m.role,
            is_active=m.is_active,
        )
        for user, m in result.all()
    ]


async def register_member(
    session: AsyncSession, org_id: uuid.UUID, req: MemberCreate
) -> MemberRead:
    """Add a user to the tenant roster with a PIN (creating the user if needed)."""
    result = await session.execute(select(User).where(User.email == req.email))
    user = result.scalar_one_or_none()

    if user is not None:
        existing = await session.get(Membership, (user.id, org_id))
        if existing is not None:
            raise HTTPException(status_code=409, detail="User is already a member")
    digest = await _ensure_pin_available(session, org_id, req.pin)

    if user is None:
        user = User(
            email=req.email,
            display_name=req.display_name,
            password_hash=hash_password(req.password) if req.password else None,
        )
        session.add(user)
        await session.flush()

    membership = Membership(
        user_id=user.id,
        org_id=org_id,
        role=req.role.value,
        display_name=req.display_name,
        pin_digest=digest,
        is_active=True,
    )
    session.add(membership)
    await session.flush()

    log.info("roster.member_added", org_id=str(org_id), user_id=str(user.id), role=req.role.value)
    return MemberRead(
        user_id=user.id,
        email=user.email,
        display_name=membership.display_name,
        role=membership.role,
        is_active=True,
    )


async def change_pin(
    session: AsyncSession, org_id: uuid.UUID, user_id: uuid.UUID, pin: str
) -> None:
    membership = await get_membership_or_404(session, org_id, user_id)
    membership.pin_digest = await _ensure_pin_available(session, org_id, pin, user_id=user_id)
    session.add(membership)
    await session.flush()
    log.info("roster.pin_changed", org_id=str(org_id), user_id=str(user_id))


async def deactivate_member(
    session: AsyncSession, org_id: uuid.UUID, user_id: uuid.UUID
) -> None:
    """Deactivated actors keep their history but no longer pass the PIN gate."""
    membership = await get_membership_or_404(session, org_id, user_id)
    membership.is_active = False
    session.add(membership)
    await session.flush()
    log.info("roster.member_deactivated", org_id=str(org_id), user_id=str(user_id))
