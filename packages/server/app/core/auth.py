"""
Authentication and Authorization for ShiftCheck.

Supports:
- Email/Password login for managers, administrators and kiosk devices
- JWT session management (cookie or bearer) with Redis revocation list
- Role-based authorization dependencies
- Org-scoping

The in-app PIN is not a session credential; it is checked per action by
app.services.roster.
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
import structlog
from fastapi import Depends, HTTPException, Request
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import get_settings
from app.core.database import get_session
from app.core.redis import get_redis
from app.models.membership import Membership
from app.models.organization import Organization
from app.models.user import User
from shiftcheck_shared.schemas.common import Role

log = structlog.get_logger()
settings = get_settings()

SESSION_COOKIE = "sc_session"
CSRF_COOKIE = "sc_csrf"

authorization_header = APIKeyHeader(name="Authorization", auto_error=False)

# Role hierarchy: each role includes the permissions of those below it
ROLE_RANK = {Role.EMPLOYEE.value: 0, Role.MANAGER.value: 1, Role.ADMIN.value: 2}

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    """Hash a password using bcrypt with cost factor 12."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=12)).decode()


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    return bcrypt.checkpw(password.encode(), hashed.encode())


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(
    user_id: uuid.UUID,
    org_ids: list[str],
    active_org: str,
    role: str,
    *,
    expires_delta: timedelta | None = None,
) -> tuple[str, str]:
    """Create a signed JWT. Returns (token, jti)."""
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "sub": str(user_id),
        "org_ids": org_ids,
        "active_org": active_org,
        "role": role,
        "iat": now,
        "exp": exp,
        "jti": jti,
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, jti


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


# ---------------------------------------------------------------------------
# JWT Revocation (Redis)
# ---------------------------------------------------------------------------

async def revoke_jwt(jti: str, ttl_seconds: int = 3600) -> None:
    """Add a JWT ID to the revocation list in Redis."""
    redis = await get_redis()
    await redis.setex(f"jwt:revoked:{jti}", ttl_seconds, "1")


async def is_jwt_revoked(jti: str) -> bool:
    """Check if a JWT ID has been revoked."""
    redis = await get_redis()
    return await redis.exists(f"jwt:revoked:{jti}") > 0


def generate_csrf_token() -> str:
    """Generate a random CSRF token."""
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

class AuthenticatedUser:
    """Container for an authenticated session user + their org context."""

    def __init__(self, user: User, org: Organization, membership: Membership, jti: str | None = None):
        self.user = user
        self.org = org
        self.membership = membership
        self.user_id = user.id
        self.org_id = org.id
        self.role = membership.role
        self.jti = jti

    def has_role(self, minimum: Role) -> bool:
        return ROLE_RANK.get(self.role, -1) >= ROLE_RANK[minimum.value]


async def resolve_org(org_slug: str, session: AsyncSession) -> Organization:
    """Resolve an org by slug, raise 404 if not found."""
    result = await session.execute(
        select(Organization).where(Organization.slug == org_slug)
    )
    org = result.scalar_one_or_none()
    if not org or org.status != "active":
        raise HTTPException(status_code=404, detail="Organization not found")
    return org


async def _authenticate_jwt(
    token: str, org: Organization, session: AsyncSession
) -> AuthenticatedUser:
    try:
        payload = decode_jwt(token)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired session")

    jti = payload.get("jti")
    if jti and await is_jwt_revoked(jti):
        raise HTTPException(status_code=401, detail="Session has been revoked")

    user_id = uuid.UUID(payload["sub"])

    # Verify user is an active member of this org
    result = await session.execute(
        select(Membership).where(Membership.user_id == user_id, Membership.org_id == org.id)
    )
    membership = result.scalar_one_or_none()
    if not membership or not membership.is_active:
        log.warning("auth.not_a_member", user_id=str(user_id), org_id=str(org.id))
        raise HTTPException(status_code=404, detail="Organization not found")

    user = await session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    return AuthenticatedUser(user=user, org=org, membership=membership, jti=jti)


async def get_authenticated_user(
    request: Request,
    orgSlug: str,
    authorization: Optional[str] = Depends(authorization_header),
    session: AsyncSession = Depends(get_session),
) -> AuthenticatedUser:
    """Main authentication dependency. Tries a bearer token first, then the session cookie."""
    org = await resolve_org(orgSlug, session)

    token = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization[7:].strip()
    if not token:
        token = request.cookies.get(SESSION_COOKIE)
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")

    auth_user = await _authenticate_jwt(token, org, session)
    request.state.auth = auth_user
    structlog.contextvars.bind_contextvars(org=org.slug, user_id=str(auth_user.user_id))
    return auth_user


# ---------------------------------------------------------------------------
# Authorization dependencies (role checks)
# ---------------------------------------------------------------------------

async def require_member(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
) -> AuthenticatedUser:
    """Any active org member (including shared kiosk sessions)."""
    return auth


async def require_manager(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
) -> AuthenticatedUser:
    """Requires manager or administrator role."""
    if not auth.has_role(Role.MANAGER):
        raise HTTPException(status_code=403, detail="Manager access required")
    return auth


async def require_admin(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
) -> AuthenticatedUser:
    """Requires administrator role."""
    if not auth.has_role(Role.ADMIN):
        raise HTTPException(status_code=403, detail="Administrator access required")
    return auth
