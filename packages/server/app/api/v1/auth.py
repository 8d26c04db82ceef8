"""
Authentication endpoints.

- Email/Password login (managers, administrators, kiosk device accounts)
- JWT session management (refresh, logout)

Browsers receive the session as an httpOnly cookie plus a CSRF cookie; kiosks
use the token returned in the body as a bearer credential.
"""

from __future__ import annotations

import uuid

import jwt
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.auth import (
    CSRF_COOKIE,
    SESSION_COOKIE,
    create_jwt,
    decode_jwt,
    generate_csrf_token,
    is_jwt_revoked,
    revoke_jwt,
    verify_password,
)
from app.core.config import get_settings
from app.core.database import get_session
from app.models.membership import Membership
from app.models.organization import Organization
from app.models.user import User
from shiftcheck_shared.schemas.roster import AuthResponse, LoginRequest

log = structlog.get_logger()
settings = get_settings()
router = APIRouter()

# Cookie config
COOKIE_KWARGS = {
    "httponly": True,
    "secure": not settings.debug,  # allow non-HTTPS in dev
    "samesite": "lax",
    "path": "/",
    "max_age": settings.jwt_expire_minutes * 60,
}


def _set_session_cookies(response: Response, token: str, csrf: str) -> None:
    """Set the session JWT and CSRF cookies on a response."""
    response.set_cookie(key=SESSION_COOKIE, value=token, **COOKIE_KWARGS)
    response.set_cookie(
        key=CSRF_COOKIE,
        value=csrf,
        httponly=False,  # JS must read this
        secure=not settings.debug,
        samesite="lax",
        path="/",
        max_age=settings.jwt_expire_minutes * 60,
    )


def _bearer_or_cookie(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[7:].strip()
    return request.cookies.get(SESSION_COOKIE)


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """Authenticate with email/password and receive a JWT session."""
    result = await session.execute(select(User).where(User.email == body.email))
    user = result.scalar_one_or_none()

    if not user or not user.password_hash:
        raise HTTPException(status_code=401, detail="Invalid email or password")

    if not verify_password(body.password, user.password_hash):
        log.warning("auth.login_failure", email=body.email, reason="bad_password")
        raise HTTPException(status_code=401, detail="Invalid email or password")

    stmt = select(Membership, Organization).join(
        Organization, Organization.id == Membership.org_id
    ).where(Membership.user_id == user.id, Membership.is_active.is_(True))
    memberships = (await session.execute(stmt)).all()
    if not memberships:
        raise HTTPException(status_code=403, detail="User has no organization memberships")

    active = memberships[0]
    if body.org_slug:
        matches = [m for m in memberships if m[1].slug == body.org_slug]
        if not matches:
            raise HTTPException(status_code=403, detail="Not a member of this organization")
        active = matches[0]
    membership, org = active

    token, _jti = create_jwt(
        user_id=user.id,
        org_ids=[str(m.org_id) for m, _ in memberships],
        active_org=str(org.id),
        role=membership.role,
    )
    _set_session_cookies(response, token, generate_csrf_token())

    log.info("auth.login_success", user_id=str(user.id), org=org.slug)
    return AuthResponse(
        user_id=str(user.id),
        email=user.email,
        message="Login successful",
        token=token,
    )


@router.post("/refresh", response_model=AuthResponse)
async def refresh_session(request: Request, response: Response):
    """Refresh the current JWT session by issuing a new token."""
    token = _bearer_or_cookie(request)
    if not token:
        raise HTTPException(status_code=401, detail="No active session")

    try:
        payload = decode_jwt(token)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired session")

    jti = payload.get("jti")
    if jti and await is_jwt_revoked(jti):
        raise HTTPException(status_code=401, detail="Session has been revoked")

    new_token, _new_jti = create_jwt(
        user_id=uuid.UUID(payload["sub"]),
        org_ids=payload["org_ids"],
        active_org=payload["active_org"],
        role=payload["role"],
    )
    if jti:
        await revoke_jwt(jti)

    _set_session_cookies(response, new_token, generate_csrf_token())
    return AuthResponse(
        user_id=payload["sub"], email="", message="Session refreshed", token=new_token
    )


@router.post("/logout")
async def logout(request: Request, response: Response):
    """Invalidate the current session."""
    token = _bearer_or_cookie(request)
    if token:
        try:
            payload = decode_jwt(token)
        except jwt.PyJWTError:
            payload = {}  # already invalid: just clear cookies
        jti = payload.get("jti")
        if jti:
            await revoke_jwt(jti)

    response.delete_cookie(SESSION_COOKIE, path="/")
    response.delete_cookie(CSRF_COOKIE, path="/")
    return {"message": "Logged out"}
