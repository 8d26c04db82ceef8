"""
Tests for the review and rework loop.

Covers:
- Aggregate status rule
- Transition table (Pending -> Approved | Rework, Rework -> Pending, Approved -> Rework)
- Batch review: rework counts, notes, reopening, whole-batch rejection
- Resubmission of fixed tasks and the append-only review history
- Approved tasks locked against re-completion
"""

import datetime as dt

import pytest
from fastapi import HTTPException

from app.services.recurrence import get_location_or_404, get_tasklist_or_404
from app.services.review import (
    is_valid_transition,
    list_history,
    resubmit,
    review_tasks,
)
from app.services.submissions import (
    complete_task,
    compute_aggregate_status,
    get_rows,
    get_submission_or_404,
    sign_off,
)
from shiftcheck_shared.schemas.common import ReviewStatus
from shiftcheck_shared.schemas.submissions import CompleteTaskRequest, SignoffRequest, TaskDraft

MONDAY = dt.date(2026, 10, 19)

APPROVED = ReviewStatus.APPROVED
REWORK = ReviewStatus.REWORK
PENDING = ReviewStatus.PENDING


# ---------------------------------------------------------------------------
# Unit Tests: Aggregate & transitions
# ---------------------------------------------------------------------------

class TestAggregateStatus:
    def test_any_rework_wins(self):
        assert compute_aggregate_status(["Approved", "Rework", "Pending"]) == REWORK

    def test_all_approved(self):
        assert compute_aggregate_status(["Approved", "Approved"]) == APPROVED

    def test_mixed_approved_and_pending(self):
        assert compute_aggregate_status(["Approved", "Pending"]) == PENDING

    def test_empty_is_pending(self):
        assert compute_aggregate_status([]) == PENDING


class TestTransitions:
    def test_valid(self):
        assert is_valid_transition("Pending", "Approved")
        assert is_valid_transition("Pending", "Rework")
        assert is_valid_transition("Rework", "Pending")
        assert is_valid_transition("Approved", "Rework")

    def test_invalid(self):
        assert not is_valid_transition("Rework", "Approved")
        assert not is_valid_transition("Approved", "Pending")
        assert not is_valid_transition("Pending", "Pending")


# ---------------------------------------------------------------------------
# Integration Tests: Review loop on a signed-off Closing tasklist (5 tasks)
# ---------------------------------------------------------------------------

@pytest.fixture
async def signed_closing(session, world):
    """Closing tasklist with all five tasks completed and signed off on Monday."""
    location = await get_location_or_404(session, world.location_id, world.org_id)
    tasklist = await get_tasklist_or_404(session, world.org_id, location, world.closing_id, MONDAY)
    for task_id in world.closing_tasks:
        await complete_task(
            session,
            world.org_id,
            tasklist,
            world.location_id,
            task_id,
            CompleteTaskRequest(pin=world.pins["employee"]),
            MONDAY,
        )
    read = await sign_off(
        session, world.org_id, tasklist, world.location_id,
        SignoffRequest(pin=world.pins["employee"]), MONDAY,
    )
    await session.commit()
    return await get_submission_or_404(session, read.id, world.org_id), tasklist


async def _rows_by_id(session, submission):
    return {r.task_id: r for r in await get_rows(session, submission.id)}


class TestReviewLoop:
    @pytest.mark.asyncio
    async def test_two_of_five_sent_back(self, session, world, signed_closing):
        submission, _ = signed_closing
        t = world.closing_tasks

        await review_tasks(session, submission, [t[0], t[1], t[2]], APPROVED, None, world.users["manager"])
        moved = await review_tasks(
            session, submission, [t[3], t[4]], REWORK, "Floor still wet", world.users["manager"]
        )
        assert set(moved) == {t[3], t[4]}
        assert submission.status == "Rework"

        rows = await _rows_by_id(session, submission)
        for task_id in (t[0], t[1], t[2]):
            assert rows[task_id].review_status == "Approved"
            assert rows[task_id].rework_count == 0
        for task_id in (t[3], t[4]):
            assert rows[task_id].review_status == "Rework"
            assert rows[task_id].rework_count == 1
            assert rows[task_id].review_note == "Floor still wet"
            assert rows[task_id].status == "Incomplete"

    @pytest.mark.asyncio
    async def test_all_approved_sets_submission_approved(self, session, world, signed_closing):
        submission, _ = signed_closing
        await review_tasks(session, submission, world.closing_tasks, APPROVED, None)
        assert submission.status == "Approved"

    @pytest.mark.asyncio
    async def test_invalid_transition_rejects_whole_batch(self, session, world, signed_closing):
        submission, _ = signed_closing
        t = world.closing_tasks
        await review_tasks(session, submission, [t[0]], REWORK, "Redo")

        with pytest.raises(HTTPException) as exc:
            await review_tasks(session, submission, [t[0], t[1]], APPROVED, None)
        assert exc.value.status_code == 422
        assert exc.value.detail["code"] == "INVALID_REVIEW_TRANSITION"
        assert exc.value.detail["task_ids"] == [str(t[0])]

        rows = await _rows_by_id(session, submission)
        assert rows[t[1]].review_status == "Pending"

    @pytest.mark.asyncio
    async def test_pending_is_not_a_review_decision(self, session, world, signed_closing):
        submission, _ = signed_closing
        with pytest.raises(HTTPException) as exc:
            await review_tasks(session, submission, [world.closing_tasks[0]], PENDING, None)
        assert exc.value.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_task_is_404(self, session, world, signed_closing):
        submission, _ = signed_closing
        with pytest.raises(HTTPException) as exc:
            await review_tasks(session, submission, [world.opening_tasks["door"]], APPROVED, None)
        assert exc.value.status_code == 404

    @pytest.mark.asyncio
    async def test_already_in_target_state_is_skipped(self, session, world, signed_closing):
        submission, _ = signed_closing
        t = world.closing_tasks
        await review_tasks(session, submission, [t[0]], REWORK, "Redo")
        moved = await review_tasks(session, submission, [t[0]], REWORK, "Redo again")
        assert moved == []
        rows = await _rows_by_id(session, submission)
        assert rows[t[0]].rework_count == 1

    @pytest.mark.asyncio
    async def test_approved_task_can_be_sent_back(self, session, world, signed_closing):
        submission, _ = signed_closing
        t = world.closing_tasks
        await review_tasks(session, submission, [t[0]], APPROVED, None)
        await review_tasks(session, submission, [t[0]], REWORK, "Looked again")
        rows = await _rows_by_id(session, submission)
        assert rows[t[0]].review_status == "Rework"
        assert rows[t[0]].rework_count == 1


class TestResubmit:
    @pytest.mark.asyncio
    async def test_only_fixed_tasks_return_to_pending(self, session, world, signed_closing):
        submission, tasklist = signed_closing
        t = world.closing_tasks
        await review_tasks(session, submission, [t[3], t[4]], REWORK, "Redo")

        # The worker redoes one of the two
        state = await complete_task(
            session,
            world.org_id,
            tasklist,
            world.location_id,
            t[3],
            CompleteTaskRequest(pin=world.pins["employee"]),
            MONDAY,
        )
        redone = next(r for r in state.tasks if r.task_id == t[3])
        assert redone.status == "Complete"
        assert redone.review_status == "Rework"

        moved, remaining = await resubmit(session, submission, world.users["employee"])
        assert moved == [t[3]]
        assert remaining == [t[4]]
        assert submission.status == "Rework"

        rows = await _rows_by_id(session, submission)
        assert rows[t[3]].review_status == "Pending"
        assert rows[t[3]].rework_count == 1

    @pytest.mark.asyncio
    async def test_approved_task_cannot_be_completed_again(self, session, world, signed_closing):
        submission, tasklist = signed_closing
        t = world.closing_tasks
        await review_tasks(session, submission, t, APPROVED, None, world.users["manager"])
        await session.commit()
        assert submission.status == "Approved"

        with pytest.raises(HTTPException) as exc:
            await complete_task(
                session,
                world.org_id,
                tasklist,
                world.location_id,
                t[0],
                CompleteTaskRequest(pin=world.pins["employee"], draft=TaskDraft(note="changed after approval")),
                MONDAY,
            )
        assert exc.value.status_code == 409
        assert exc.value.detail["code"] == "TASK_LOCKED"

        rows = await _rows_by_id(session, submission)
        assert rows[t[0]].review_status == "Approved"
        assert rows[t[0]].note == ""
        assert submission.status == "Approved"

    @pytest.mark.asyncio
    async def test_approval_after_resubmit_keeps_rework_count(self, session, world, signed_closing):
        submission, tasklist = signed_closing
        task_id = world.closing_tasks[2]
        await review_tasks(session, submission, [task_id], REWORK, "Mop the corners", world.users["manager"])
        await complete_task(
            session,
            world.org_id,
            tasklist,
            world.location_id,
            task_id,
            CompleteTaskRequest(pin=world.pins["employee"], draft=TaskDraft(note="corners done")),
            MONDAY,
        )
        await resubmit(session, submission, world.users["employee"])
        await review_tasks(session, submission, world.closing_tasks, APPROVED, None, world.users["manager"])

        rows = await _rows_by_id(session, submission)
        assert rows[task_id].review_status == "Approved"
        assert rows[task_id].rework_count == 1
        assert rows[task_id].note == "corners done"
        assert submission.status == "Approved"

    @pytest.mark.asyncio
    async def test_resubmit_with_nothing_in_rework(self, session, world, signed_closing):
        submission, _ = signed_closing
        moved, remaining = await resubmit(session, submission)
        assert moved == [] and remaining == []
        assert submission.status == "Pending"


class TestHistory:
    @pytest.mark.asyncio
    async def test_history_records_each_transition(self, session, world, signed_closing):
        submission, tasklist = signed_closing
        task_id = world.closing_tasks[0]
        await review_tasks(session, submission, [task_id], REWORK, "Redo", world.users["manager"])
        await complete_task(
            session,
            world.org_id,
            tasklist,
            world.location_id,
            task_id,
            CompleteTaskRequest(pin=world.pins["employee"]),
            MONDAY,
        )
        await resubmit(session, submission, world.users["employee"])
        await review_tasks(session, submission, [task_id], APPROVED, None, world.users["manager"])
        await session.commit()

        history = await list_history(session, submission.id, task_id)
        assert [e.review_status for e in history] == ["Rework", "Pending", "Approved"]
        assert history[0].note == "Redo"
        assert history[0].reviewer_id == world.users["manager"]

        assert await list_history(session, submission.id, world.closing_tasks[1]) == []
