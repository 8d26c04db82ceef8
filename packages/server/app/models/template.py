"""Checklist templates and their task definitions."""

from typing import List, Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class ChecklistTemplate(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "checklist_templates"

    org_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    location_id: uuid.UUID = Field(foreign_key="locations.id", nullable=False, index=True)
    name: str = Field(nullable=False)
    time_block_id: Optional[uuid.UUID] = Field(default=None, foreign_key="time_blocks.id")
    recurrence: List[int] = Field(default_factory=list, sa_type=sa.JSON, nullable=False)  # 0=Sun .. 6=Sat
    requires_approval: bool = Field(default=True, nullable=False)
    signoff_method: str = Field(default="PIN", nullable=False)
    active: bool = Field(default=True, nullable=False)


class TemplateTask(UUIDMixin, SQLModel, table=True):
    __tablename__ = "template_tasks"

    template_id: uuid.UUID = Field(
        foreign_key="checklist_templates.id", nullable=False, index=True
    )
    org_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    title: str = Field(nullable=False)
    category: str = Field(default="", nullable=False)
    input_type: str = Field(default="checkbox", nullable=False)  # checkbox | number | text
    min: Optional[float] = None
    max: Optional[float] = None
    photo_required: bool = Field(default=False, nullable=False)
    note_required: bool = Field(default=False, nullable=False)
    allow_na: bool = Field(default=True, nullable=False)
    priority: int = Field(default=3, nullable=False)  # 1=Critical .. 4=Low
    position: int = Field(default=0, nullable=False)
