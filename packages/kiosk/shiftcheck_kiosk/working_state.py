"""
Kiosk-side working state: per-tasklist, per-task drafts held during a work
session and reconciled against the server's authoritative rows.

- DraftTaskState is session-local; SubmissionTaskRead (shared schema) is the
  server's truth. They are never the same object.
- `merge` is the only place precedence between the two is decided.
- Debouncer coalesces bursts of refresh triggers into one re-fetch.
"""

from __future__ import annotations

import asyncio
import dataclasses
import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional

import structlog

from shiftcheck_shared.eligibility import (
    can_sign_off,
    deserialize_value,
    ineligibility_reason,
)
from shiftcheck_shared.schemas.common import ReviewStatus, TaskStatus
from shiftcheck_shared.schemas.submissions import SubmissionTaskRead, TaskDraft, WorkingStateRead
from shiftcheck_shared.schemas.tasklists import Tasklist

log = structlog.get_logger()

# Fields the worker edits; everything else on a draft is owned by the server
WORKER_FIELDS = ("value", "note", "photos", "na")
# Still editable on a task sent back for rework
REWORK_FIELDS = ("note", "photos")


class TaskLockedError(ValueError):
    """Edit refused because the task is complete and not in rework."""


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _as_utc(value: dt.datetime) -> dt.datetime:
    # Naive timestamps from the server are UTC
    return value if value.tzinfo else value.replace(tzinfo=dt.timezone.utc)


@dataclass(frozen=True)
class DraftTaskState:
    task_id: str
    status: TaskStatus = TaskStatus.INCOMPLETE
    review_status: ReviewStatus = ReviewStatus.PENDING
    na: bool = False
    value: Any = None
    note: str = ""
    photos: tuple[str, ...] = ()
    rework_count: int = 0
    review_note: Optional[str] = None
    # field name -> when it was last edited locally
    dirty: dict[str, dt.datetime] = field(default_factory=dict)

    @property
    def editable_fields(self) -> tuple[str, ...]:
        if self.status != TaskStatus.COMPLETE:
            return WORKER_FIELDS
        if self.review_status == ReviewStatus.REWORK:
            return REWORK_FIELDS
        return ()

    def to_task_draft(self) -> TaskDraft:
        return TaskDraft(na=self.na, value=self.value, note=self.note, photos=list(self.photos))


def merge(server: Optional[SubmissionTaskRead], draft: DraftTaskState, task=None) -> DraftTaskState:
    """Reconcile one draft with the server's row for the same task.

    Server-owned fields always come from the server. A worker field keeps its
    local value only while it is dirty and the server row is not newer than
    the local edit; otherwise the server value wins and the field is clean.
    """
    if server is None:
        return draft

    definition = task if task is not None else server.definition
    server_values = {
        "na": server.na,
        "value": deserialize_value(definition, server.value) if definition is not None else server.value,
        "note": server.note,
        "photos": tuple(server.photos),
    }
    server_at = _as_utc(server.updated_at) if server.updated_at else None

    merged: dict[str, Any] = {}
    dirty: dict[str, dt.datetime] = {}
    for name in WORKER_FIELDS:
        edited_at = draft.dirty.get(name)
        if edited_at is not None and (server_at is None or server_at <= _as_utc(edited_at)):
            merged[name] = getattr(draft, name)
            dirty[name] = edited_at
        else:
            merged[name] = server_values[name]

    return dataclasses.replace(
        draft,
        status=server.status,
        review_status=server.review_status,
        rework_count=server.rework_count,
        review_note=server.review_note,
        dirty=dirty,
        **merged,
    )


class WorkingStateStore:
    """Drafts for every tasklist resolved today, keyed by tasklist then task id."""

    def __init__(self) -> None:
        self._tasklists: dict[str, Tasklist] = {}
        self._drafts: dict[str, dict[str, DraftTaskState]] = {}
        self._submissions: dict[str, Optional[str]] = {}
        self._submission_status: dict[str, Optional[ReviewStatus]] = {}

    # --- Tasklists ---

    def seed(self, tasklists: Iterable[Tasklist]) -> None:
        """Replace the resolved tasklists, keeping drafts for tasks that survive.

        Tasklists and tasks no longer resolved are pruned; new ones get
        default drafts.
        """
        tasklists = list(tasklists)
        seeded: dict[str, dict[str, DraftTaskState]] = {}
        for tasklist in tasklists:
            key = str(tasklist.id)
            existing = self._drafts.get(key, {})
            seeded[key] = {
                str(t.id): existing.get(str(t.id)) or DraftTaskState(task_id=str(t.id))
                for t in tasklist.tasks
            }

        pruned = set(self._drafts) - set(seeded)
        self._tasklists = {str(t.id): t for t in tasklists}
        self._drafts = seeded
        for key in pruned:
            self._submissions.pop(key, None)
            self._submission_status.pop(key, None)
        if pruned:
            log.info("working_state.pruned", tasklists=sorted(pruned))

    def tasklists(self) -> list[Tasklist]:
        return list(self._tasklists.values())

    def tasklist(self, tasklist_id) -> Tasklist:
        try:
            return self._tasklists[str(tasklist_id)]
        except KeyError:
            raise KeyError(f"Tasklist {tasklist_id} is not resolved for today") from None

    def submission_id(self, tasklist_id) -> Optional[str]:
        return self._submissions.get(str(tasklist_id))

    def submission_status(self, tasklist_id) -> Optional[ReviewStatus]:
        return self._submission_status.get(str(tasklist_id))

    # --- Drafts ---

    def drafts(self, tasklist_id) -> dict[str, DraftTaskState]:
        self.tasklist(tasklist_id)
        return dict(self._drafts[str(tasklist_id)])

    def draft(self, tasklist_id, task_id) -> DraftTaskState:
        drafts = self.drafts(tasklist_id)
        try:
            return drafts[str(task_id)]
        except KeyError:
            raise KeyError(f"Task {task_id} is not in tasklist {tasklist_id}") from None

    def edit(self, tasklist_id, task_id, *, now: dt.datetime | None = None, **changes) -> DraftTaskState:
        """Apply a worker edit, marking the edited fields dirty."""
        unknown = set(changes) - set(WORKER_FIELDS)
        if unknown:
            raise ValueError(f"Not editable: {', '.join(sorted(unknown))}")

        current = self.draft(tasklist_id, task_id)
        locked = set(changes) - set(current.editable_fields)
        if locked:
            raise TaskLockedError(f"Task is complete; cannot change {', '.join(sorted(locked))}")

        task = self.tasklist(tasklist_id).task(task_id)
        if changes.get("na") and not task.allow_na:
            raise ValueError("N/A is not allowed for this task")
        if "photos" in changes:
            changes["photos"] = tuple(changes["photos"])

        edited_at = now or _utcnow()
        updated = dataclasses.replace(
            current,
            dirty={**current.dirty, **{name: edited_at for name in changes}},
            **changes,
        )
        self._drafts[str(tasklist_id)][str(task_id)] = updated
        return updated

    def add_photo(self, tasklist_id, task_id, path: str, now: dt.datetime | None = None) -> DraftTaskState:
        current = self.draft(tasklist_id, task_id)
        return self.edit(tasklist_id, task_id, now=now, photos=(*current.photos, path))

    def mark_saved(self, tasklist_id, task_id) -> None:
        """Forget local edits that the server has just accepted."""
        current = self.draft(tasklist_id, task_id)
        self._drafts[str(tasklist_id)][str(task_id)] = dataclasses.replace(current, dirty={})

    # --- Reconciliation ---

    def reconcile(self, state: WorkingStateRead) -> None:
        """Merge a fresh server read of one tasklist into its drafts."""
        key = str(state.tasklist_id)
        tasklist = self._tasklists.get(key)
        if tasklist is None:
            log.info("working_state.reconcile_skipped", tasklist_id=key)
            return

        rows = {str(r.task_id): r for r in state.tasks}
        drafts = self._drafts[key]
        for task in tasklist.tasks:
            task_key = str(task.id)
            drafts[task_key] = merge(rows.get(task_key), drafts[task_key], task)

        self._submissions[key] = str(state.submission_id) if state.submission_id else None
        self._submission_status[key] = state.submission_status

    # --- Eligibility ---

    def ineligibility_reason(self, tasklist_id, task_id) -> Optional[str]:
        task = self.tasklist(tasklist_id).task(task_id)
        return ineligibility_reason(task, self.draft(tasklist_id, task_id))

    def can_complete(self, tasklist_id, task_id) -> bool:
        return self.ineligibility_reason(tasklist_id, task_id) is None

    def can_sign_off(self, tasklist_id) -> bool:
        return can_sign_off(self.tasklist(tasklist_id).tasks, self.drafts(tasklist_id))

    def signoff_drafts(self, tasklist_id) -> dict[str, TaskDraft]:
        """N/A drafts not yet persisted, sent along with a signoff."""
        return {
            task_id: d.to_task_draft()
            for task_id, d in self.drafts(tasklist_id).items()
            if d.na and d.status != TaskStatus.COMPLETE
        }


class Debouncer:
    """Coalesce bursts of `trigger()` calls into one callback after a quiet period.

    A trigger arriving while the callback runs schedules one more run.
    """

    def __init__(self, callback: Callable[[], Awaitable[None]], delay: float = 0.3):
        self._callback = callback
        self._delay = delay
        self._deadline = 0.0
        self._pending = False
        self._task: asyncio.Task | None = None
        self.runs = 0

    @property
    def pending(self) -> bool:
        return self._pending

    def trigger(self) -> None:
        loop = asyncio.get_running_loop()
        self._deadline = loop.time() + self._delay
        self._pending = True
        if self._task is None or self._task.done():
            self._task = loop.create_task(self._run())

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while self._pending:
            remaining = self._deadline - loop.time()
            if remaining > 0:
                await asyncio.sleep(remaining)
                continue
            self._pending = False
            self.runs += 1
            try:
                await self._callback()
            except Exception:
                log.exception("debouncer.callback_failed")

    async def wait(self) -> None:
        """Wait until no run is scheduled or in progress."""
        if self._task is not None:
            await self._task

    async def cancel(self) -> None:
        self._pending = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
