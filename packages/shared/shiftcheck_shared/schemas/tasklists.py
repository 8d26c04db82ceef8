"""Tasklist-related Pydantic schemas: locations, time blocks, templates and task definitions."""

from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, UUID4, field_validator, model_validator

from .common import InputType, SignoffMethod

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


# ---------------------------------------------------------------------------
# Task definitions (tagged union on input_type)
# ---------------------------------------------------------------------------

class _TaskDefinitionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID4
    title: str
    category: str = ""
    photo_required: bool = False
    note_required: bool = False
    allow_na: bool = True
    priority: int = Field(default=3, ge=1, le=4)  # 1=Critical ... 4=Low
    position: int = 0


class CheckboxTask(_TaskDefinitionBase):
    input_type: Literal["checkbox"] = "checkbox"


class NumberTask(_TaskDefinitionBase):
    input_type: Literal["number"] = "number"
    min: Optional[float] = None
    max: Optional[float] = None


class TextTask(_TaskDefinitionBase):
    input_type: Literal["text"] = "text"


TaskDefinition = Annotated[
    Union[CheckboxTask, NumberTask, TextTask],
    Field(discriminator="input_type"),
]

task_definition_adapter: TypeAdapter[TaskDefinition] = TypeAdapter(TaskDefinition)


# ---------------------------------------------------------------------------
# Locations & time blocks
# ---------------------------------------------------------------------------

def _check_timezone(value: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown IANA timezone: {value!r}")
    return value


class LocationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def _timezone(cls, value: str) -> str:
        return _check_timezone(value)


class LocationRead(BaseModel):
    id: UUID4
    org_id: UUID4
    name: str
    timezone: str


class TimeBlockCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    start_time: str = Field(..., pattern=HHMM_PATTERN)
    end_time: str = Field(..., pattern=HHMM_PATTERN)


class TimeBlockRead(BaseModel):
    id: UUID4
    name: str
    start_time: str
    end_time: str


# ---------------------------------------------------------------------------
# Templates (administration)
# ---------------------------------------------------------------------------

class TemplateTaskIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    category: str = ""
    input_type: InputType = InputType.CHECKBOX
    min: Optional[float] = None
    max: Optional[float] = None
    photo_required: bool = False
    note_required: bool = False
    allow_na: bool = True
    priority: int = Field(default=3, ge=1, le=4)

    @model_validator(mode="after")
    def _bounds_only_for_numbers(self) -> "TemplateTaskIn":
        if self.input_type != InputType.NUMBER:
            self.min = None
            self.max = None
        elif self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("min must not be greater than max")
        return self


def _check_recurrence(value: list[int]) -> list[int]:
    if any(d < 0 or d > 6 for d in value):
        raise ValueError("recurrence days must be between 0 (Sunday) and 6 (Saturday)")
    return sorted(set(value))


class TemplateCreate(BaseModel):
    location_id: UUID4
    name: str = Field(..., min_length=1, max_length=100)
    time_block_id: Optional[UUID4] = None
    recurrence: List[int] = Field(default_factory=lambda: list(range(7)))
    requires_approval: bool = True
    signoff_method: SignoffMethod = SignoffMethod.PIN
    active: bool = True
    tasks: List[TemplateTaskIn] = Field(default_factory=list)

    @field_validator("recurrence")
    @classmethod
    def _recurrence(cls, value: list[int]) -> list[int]:
        return _check_recurrence(value)


class TemplateUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    time_block_id: Optional[UUID4] = None
    recurrence: Optional[List[int]] = None
    requires_approval: Optional[bool] = None
    active: Optional[bool] = None
    tasks: Optional[List[TemplateTaskIn]] = None

    @field_validator("recurrence")
    @classmethod
    def _recurrence(cls, value: Optional[list[int]]) -> Optional[list[int]]:
        return None if value is None else _check_recurrence(value)


class TemplateRead(BaseModel):
    id: UUID4
    location_id: UUID4
    name: str
    time_block_id: Optional[UUID4] = None
    recurrence: List[int]
    requires_approval: bool
    signoff_method: SignoffMethod
    active: bool
    tasks: List[TaskDefinition] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Resolved tasklists
# ---------------------------------------------------------------------------

class Tasklist(BaseModel):
    """One day's materialized checklist, carrying a frozen copy of its tasks."""

    model_config = ConfigDict(frozen=True)

    id: UUID4  # template id
    location_id: UUID4
    name: str
    time_block_id: Optional[UUID4] = None
    time_block: Optional[TimeBlockRead] = None
    recurrence: List[int] = Field(default_factory=list)
    requires_approval: bool = True
    signoff_method: SignoffMethod = SignoffMethod.PIN
    tasks: List[TaskDefinition] = Field(default_factory=list)

    def task(self, task_id) -> Optional[TaskDefinition]:
        for t in self.tasks:
            if str(t.id) == str(task_id):
                return t
        return None


class TasklistsForDay(BaseModel):
    location_id: UUID4
    date: str
    timezone: str
    weekday: int
    tasklists: List[Tasklist] = Field(default_factory=list)
