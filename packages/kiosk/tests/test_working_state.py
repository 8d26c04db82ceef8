"""
Tests for the kiosk working-state store.

Covers:
- merge precedence between server rows and local drafts
- Seeding, pruning and re-seeding tasklists
- Edit rules (dirty tracking, locks on completed tasks, N/A permission)
- Eligibility and signoff readiness over drafts
"""

import dataclasses
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from shiftcheck_kiosk.working_state import (
    DraftTaskState,
    TaskLockedError,
    WorkingStateStore,
    merge,
)
from shiftcheck_shared.schemas.common import ReviewStatus, TaskStatus
from shiftcheck_shared.schemas.submissions import SubmissionTaskRead, WorkingStateRead
from shiftcheck_shared.schemas.tasklists import Tasklist

T0 = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)


def _row(task_id, **fields) -> SubmissionTaskRead:
    return SubmissionTaskRead(submission_id=uuid.uuid4(), task_id=task_id, **fields)


def _state(tasklist: Tasklist, rows, submission_id=None) -> WorkingStateRead:
    return WorkingStateRead(
        tasklist_id=tasklist.id,
        location_id=tasklist.location_id,
        date="2026-10-19",
        submission_id=submission_id,
        submission_status=ReviewStatus.PENDING if submission_id else None,
        tasks=rows,
    )


# ---------------------------------------------------------------------------
# merge
# ---------------------------------------------------------------------------

class TestMerge:
    def test_no_server_row_keeps_draft(self):
        draft = DraftTaskState(task_id="t", note="typing", dirty={"note": T0})
        assert merge(None, draft) is draft

    def test_server_owned_fields_always_win(self):
        task_id = uuid.uuid4()
        draft = DraftTaskState(task_id=str(task_id), review_status=ReviewStatus.APPROVED, rework_count=5)
        merged = merge(
            _row(task_id, review_status=ReviewStatus.REWORK, rework_count=1, review_note="missing photo", updated_at=T0),
            draft,
        )
        assert merged.review_status == ReviewStatus.REWORK
        assert merged.rework_count == 1
        assert merged.review_note == "missing photo"

    def test_in_flight_edit_survives_older_server_row(self):
        task_id = uuid.uuid4()
        draft = DraftTaskState(task_id=str(task_id), note="half a sente", dirty={"note": T0})
        merged = merge(_row(task_id, note="", updated_at=T0 - timedelta(seconds=5)), draft)
        assert merged.note == "half a sente"
        assert "note" in merged.dirty

    def test_newer_server_value_wins_and_clears_dirty(self):
        task_id = uuid.uuid4()
        draft = DraftTaskState(task_id=str(task_id), note="mine", dirty={"note": T0})
        merged = merge(_row(task_id, note="theirs", updated_at=T0 + timedelta(seconds=5)), draft)
        assert merged.note == "theirs"
        assert merged.dirty == {}

    def test_clean_fields_follow_server(self):
        task_id = uuid.uuid4()
        draft = DraftTaskState(task_id=str(task_id), note="typing", dirty={"note": T0})
        merged = merge(
            _row(task_id, photos=["a.jpg"], status=TaskStatus.COMPLETE, updated_at=T0 - timedelta(minutes=1)),
            draft,
        )
        assert merged.photos == ("a.jpg",)
        assert merged.status == TaskStatus.COMPLETE
        assert merged.note == "typing"

    def test_naive_server_timestamp_is_utc(self):
        task_id = uuid.uuid4()
        draft = DraftTaskState(task_id=str(task_id), note="mine", dirty={"note": T0})
        merged = merge(_row(task_id, note="theirs", updated_at=datetime(2026, 10, 19, 9, 0)), draft)
        assert merged.note == "theirs"

    def test_number_value_is_deserialized(self, opening, ids):
        task = opening.task(ids.fridge)
        merged = merge(_row(ids.fridge, value="3.5", updated_at=T0), DraftTaskState(task_id=str(ids.fridge)), task)
        assert merged.value == 3.5

    def test_merge_is_pure(self):
        task_id = uuid.uuid4()
        draft = DraftTaskState(task_id=str(task_id), note="mine", dirty={"note": T0})
        merge(_row(task_id, note="theirs", updated_at=T0 + timedelta(seconds=1)), draft)
        assert draft.note == "mine"
        assert draft.dirty == {"note": T0}


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

@pytest.fixture
def store(opening, closing) -> WorkingStateStore:
    s = WorkingStateStore()
    s.seed([opening, closing])
    return s


class TestSeeding:
    def test_default_drafts(self, store, ids):
        drafts = store.drafts(ids.opening)
        assert set(drafts) == {str(ids.door), str(ids.fridge), str(ids.sanitizer)}
        assert all(d.status == TaskStatus.INCOMPLETE and not d.na for d in drafts.values())

    def test_reseed_keeps_surviving_drafts(self, store, opening, ids):
        store.edit(ids.opening, ids.fridge, value=4)
        store.seed([opening])
        assert store.draft(ids.opening, ids.fridge).value == 4

    def test_reseed_prunes_missing_tasklists(self, store, opening, ids):
        store.seed([opening])
        assert [t.id for t in store.tasklists()] == [ids.opening]
        with pytest.raises(KeyError):
            store.drafts(ids.closing)

    def test_reseed_prunes_removed_tasks(self, store, opening, ids):
        trimmed = opening.model_copy(update={"tasks": opening.tasks[:1]})
        store.seed([trimmed])
        assert set(store.drafts(ids.opening)) == {str(ids.door)}


class TestEdits:
    def test_edit_marks_dirty(self, store, ids):
        draft = store.edit(ids.opening, ids.fridge, value=3, now=T0)
        assert draft.value == 3
        assert draft.dirty == {"value": T0}

    def test_server_owned_fields_are_not_editable(self, store, ids):
        with pytest.raises(ValueError):
            store.edit(ids.opening, ids.fridge, review_status=ReviewStatus.APPROVED)

    def test_na_refused_when_not_allowed(self, store, ids):
        with pytest.raises(ValueError):
            store.edit(ids.opening, ids.door, na=True)

    def test_completed_task_is_locked(self, store, opening, ids):
        store.reconcile(_state(opening, [_row(ids.door, status=TaskStatus.COMPLETE, updated_at=T0)]))
        with pytest.raises(TaskLockedError):
            store.edit(ids.opening, ids.door, note="late")

    def test_rework_task_allows_note_and_photos_only(self, store, opening, ids):
        store.reconcile(_state(opening, [
            _row(ids.sanitizer, status=TaskStatus.COMPLETE, review_status=ReviewStatus.REWORK, updated_at=T0),
        ]))
        store.add_photo(ids.opening, ids.sanitizer, "new.jpg")
        assert store.draft(ids.opening, ids.sanitizer).photos == ("new.jpg",)
        with pytest.raises(TaskLockedError):
            store.edit(ids.opening, ids.sanitizer, na=True)

    def test_mark_saved_clears_dirty(self, store, ids):
        store.edit(ids.opening, ids.fridge, value=3)
        store.mark_saved(ids.opening, ids.fridge)
        assert store.draft(ids.opening, ids.fridge).dirty == {}


class TestReconcile:
    def test_records_submission(self, store, opening, ids):
        sid = uuid.uuid4()
        store.reconcile(_state(opening, [], submission_id=sid))
        assert store.submission_id(ids.opening) == str(sid)
        assert store.submission_status(ids.opening) == ReviewStatus.PENDING

    def test_unknown_tasklist_is_ignored(self, store, closing, ids):
        store.seed([closing])
        store.reconcile(_state(Tasklist(id=ids.opening, location_id=ids.location, name="Opening"), []))
        assert store.submission_id(ids.opening) is None

    def test_typed_note_survives_rework_cue(self, store, opening, ids):
        # A worker is typing on one task while a manager sends another back
        store.edit(ids.opening, ids.fridge, note="checking", now=T0 + timedelta(minutes=1))
        store.reconcile(_state(opening, [
            _row(ids.door, status=TaskStatus.COMPLETE, review_status=ReviewStatus.REWORK, rework_count=1, updated_at=T0),
        ]))
        assert store.draft(ids.opening, ids.fridge).note == "checking"
        assert store.draft(ids.opening, ids.door).rework_count == 1


class TestEligibility:
    def test_reason_from_shared_rules(self, store, ids):
        assert store.ineligibility_reason(ids.opening, ids.fridge) == "A numeric value is required"
        store.edit(ids.opening, ids.fridge, value=9)
        assert store.ineligibility_reason(ids.opening, ids.fridge) == "Value must be at most 5"
        store.edit(ids.opening, ids.fridge, value=5)
        assert store.can_complete(ids.opening, ids.fridge)

    def test_photo_or_na(self, store, ids):
        assert not store.can_complete(ids.opening, ids.sanitizer)
        store.edit(ids.opening, ids.sanitizer, na=True)
        assert store.can_complete(ids.opening, ids.sanitizer)
        store.edit(ids.opening, ids.sanitizer, na=False, photos=["p.jpg"])
        assert store.can_complete(ids.opening, ids.sanitizer)

    def test_signoff_needs_every_task(self, store, opening, ids):
        store.edit(ids.opening, ids.sanitizer, na=True)
        assert not store.can_sign_off(ids.opening)
        store.reconcile(_state(opening, [
            _row(ids.door, status=TaskStatus.COMPLETE, value="true", updated_at=T0),
            _row(ids.fridge, status=TaskStatus.COMPLETE, value="4", updated_at=T0),
        ]))
        assert store.can_sign_off(ids.opening)

    def test_signoff_drafts_are_unsaved_na_only(self, store, ids):
        store.edit(ids.opening, ids.sanitizer, na=True)
        store.edit(ids.opening, ids.fridge, value=2)
        drafts = store.signoff_drafts(ids.opening)
        assert list(drafts) == [str(ids.sanitizer)]
        assert drafts[str(ids.sanitizer)].na is True


def test_draft_is_immutable():
    draft = DraftTaskState(task_id="t")
    with pytest.raises(dataclasses.FrozenInstanceError):
        draft.note = "x"
