"""
Task eligibility: may a single task be marked complete given its working state?

Evaluated identically by the server (before any write) and by the kiosk
(on every edit). Pure functions over a task definition and any object
exposing `na`, `value`, `note` and `photos`.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, Mapping, Optional, Protocol

from .schemas.common import CHECKBOX_DONE_VALUE, TaskStatus


class TaskState(Protocol):
    na: bool
    value: Any
    note: str
    photos: list


def _is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def ineligibility_reason(task, state: Optional[TaskState]) -> Optional[str]:
    """Return the first rule the state fails, or None when the task may complete.

    Rules, in order: no state; N/A short-circuits everything; required photo;
    required note; numeric value within inclusive bounds.
    """
    if state is None:
        return "Task has not been started"
    if state.na:
        return None
    if task.photo_required and not state.photos:
        return "A photo is required"
    if task.note_required and not (state.note or "").strip():
        return "A note is required"
    if task.input_type == "number":
        value = state.value
        if not _is_finite_number(value):
            return "A numeric value is required"
        if task.min is not None and value < task.min:
            return f"Value must be at least {task.min:g}"
        if task.max is not None and value > task.max:
            return f"Value must be at most {task.max:g}"
    return None


def can_complete(task, state: Optional[TaskState]) -> bool:
    return ineligibility_reason(task, state) is None


def is_ready_for_signoff(task, state, status: Optional[str] = None) -> bool:
    """A task counts toward signoff when it is Complete (or N/A) and still eligible."""
    if state is None:
        return False
    status = status if status is not None else getattr(state, "status", None)
    done = status == TaskStatus.COMPLETE or state.na
    return bool(done) and can_complete(task, state)


def can_sign_off(tasks: Iterable, states: Mapping[str, Any]) -> bool:
    """True when every task has a state that is ready for signoff.

    `states` is keyed by the string form of the task id.
    """
    return all(is_ready_for_signoff(t, states.get(str(t.id))) for t in tasks)


# ---------------------------------------------------------------------------
# Value serialization
# ---------------------------------------------------------------------------

def serialize_value(task, state: TaskState) -> Optional[str]:
    """Stored representation of a completed task's value.

    number -> numeric string, text -> the note, checkbox -> fixed marker.
    N/A tasks store no value.
    """
    if state.na:
        return None
    if task.input_type == "number":
        value = state.value
        if not _is_finite_number(value):
            return None
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)
    if task.input_type == "text":
        return state.note or ""
    return CHECKBOX_DONE_VALUE


def deserialize_value(task, raw: Optional[str]) -> Any:
    """Inverse of serialize_value for number tasks; other types pass through."""
    if raw is None or task.input_type != "number":
        return raw
    try:
        value = float(raw)
    except ValueError:
        return raw
    return value if math.isfinite(value) else raw
