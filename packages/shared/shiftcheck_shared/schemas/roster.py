"""Actor roster, PIN and session schemas."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, EmailStr, Field, UUID4

from .common import Role


class ActorRead(BaseModel):
    """An active member identified by PIN."""
    user_id: UUID4
    display_name: str
    role: Role


class PinVerifyRequest(BaseModel):
    pin: str = Field(..., min_length=1, max_length=16)


class PinVerifyResponse(BaseModel):
    actor: Optional[ActorRead] = None


class MemberCreate(BaseModel):
    email: EmailStr
    display_name: str = Field(..., min_length=1, max_length=100)
    role: Role = Role.EMPLOYEE
    pin: str
    password: Optional[str] = Field(default=None, min_length=8)


class MemberRead(BaseModel):
    user_id: UUID4
    email: Optional[str] = None
    display_name: str
    role: Role
    is_active: bool


class PinUpdate(BaseModel):
    pin: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    org_slug: Optional[str] = None


class AuthResponse(BaseModel):
    user_id: str
    email: str
    message: str
    token: Optional[str] = None
