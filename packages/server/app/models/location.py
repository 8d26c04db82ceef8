"""Location and time-block models."""

import uuid

from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Location(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "locations"

    org_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    name: str = Field(nullable=False)
    timezone: str = Field(default="UTC", nullable=False)  # IANA zone


class TimeBlock(UUIDMixin, SQLModel, table=True):
    __tablename__ = "time_blocks"

    org_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    name: str = Field(nullable=False)
    start_time: str = Field(nullable=False)  # HH:MM
    end_time: str = Field(nullable=False)  # HH:MM
