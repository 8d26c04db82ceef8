"""Tenant membership: the actor roster consulted by the PIN gate."""

from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class Membership(SQLModel, table=True):
    __tablename__ = "memberships"
    __table_args__ = (
        sa.UniqueConstraint("org_id", "pin_digest", name="uq_memberships_org_pin"),
    )

    user_id: uuid.UUID = Field(foreign_key="users.id", primary_key=True)
    org_id: uuid.UUID = Field(foreign_key="organizations.id", primary_key=True)
    role: str = Field(nullable=False, default="employee")  # administrator | manager | employee
    display_name: str = Field(nullable=False)
    pin_digest: Optional[str] = Field(default=None, index=True)  # HMAC-SHA256 of the PIN
    is_active: bool = Field(default=True, nullable=False)
