"""
Tests for recurrence resolution.

Covers:
- Weekday mapping (Sunday=0) in the location's timezone
- Template filtering by active flag, location and recurrence days
- Deterministic ordering of tasklists and tasks
- Database-backed loading and the per-day tasklist lookup
"""

import datetime as dt
import uuid

import pytest
from fastapi import HTTPException

from app.services.recurrence import (
    get_location_or_404,
    get_tasklist_or_404,
    load_tasklists_for_day,
    resolve_tasklists_for_day,
    today_in_tz,
    weekday_index,
)
from shiftcheck_shared.schemas.tasklists import CheckboxTask, TemplateRead, TimeBlockRead

MONDAY = dt.date(2026, 10, 19)
TUESDAY = dt.date(2026, 10, 20)

LOCATION = uuid.uuid4()


def _template(name, recurrence, *, active=True, location_id=LOCATION, block=None, tasks=()):
    return TemplateRead(
        id=uuid.uuid4(),
        location_id=location_id,
        name=name,
        time_block_id=block.id if block else None,
        recurrence=recurrence,
        requires_approval=True,
        signoff_method="PIN",
        active=active,
        tasks=list(tasks),
    )


def _block(name, start):
    return TimeBlockRead(id=uuid.uuid4(), name=name, start_time=start, end_time="23:59")


# ---------------------------------------------------------------------------
# Unit Tests: Calendar helpers
# ---------------------------------------------------------------------------

class TestWeekday:
    def test_sunday_is_zero(self):
        assert weekday_index("2026-10-18", "UTC") == 0
        assert weekday_index("2026-10-24", "UTC") == 6

    def test_accepts_date_objects(self):
        assert weekday_index(MONDAY, "UTC") == 1

    @pytest.mark.parametrize("tz", ["Asia/Tokyo", "America/Los_Angeles", "Asia/Kolkata"])
    def test_calendar_day_is_stable_across_zones(self, tz):
        assert weekday_index(MONDAY, tz) == 1

    def test_unknown_timezone_falls_back_to_utc(self):
        assert weekday_index(MONDAY, "Mars/Olympus_Mons") == 1

    def test_today_in_tz_crosses_midnight(self):
        now = dt.datetime(2026, 10, 20, 2, 30, tzinfo=dt.timezone.utc)
        assert today_in_tz("UTC", now) == TUESDAY
        assert today_in_tz("America/New_York", now) == MONDAY


# ---------------------------------------------------------------------------
# Unit Tests: Pure resolution
# ---------------------------------------------------------------------------

class TestResolution:
    def test_mon_wed_fri_template_not_due_on_tuesday(self):
        template = _template("Closing", [1, 3, 5])
        assert resolve_tasklists_for_day([template], [], LOCATION, TUESDAY, "UTC") == []
        assert len(resolve_tasklists_for_day([template], [], LOCATION, MONDAY, "UTC")) == 1

    def test_inactive_template_never_resolves(self):
        template = _template("Opening", list(range(7)), active=False)
        for offset in range(7):
            day = MONDAY + dt.timedelta(days=offset)
            assert resolve_tasklists_for_day([template], [], LOCATION, day, "UTC") == []

    def test_other_location_is_skipped(self):
        template = _template("Opening", list(range(7)), location_id=uuid.uuid4())
        assert resolve_tasklists_for_day([template], [], LOCATION, MONDAY, "UTC") == []

    def test_ordered_by_block_start_then_name(self):
        morning, evening = _block("Morning", "06:00"), _block("Evening", "20:00")
        templates = [
            _template("Zeta", [1], block=evening),
            _template("Beta", [1], block=morning),
            _template("Alpha", [1], block=morning),
            _template("Unscheduled", [1]),
        ]
        names = [t.name for t in resolve_tasklists_for_day(templates, [morning, evening], LOCATION, MONDAY, "UTC")]
        assert names == ["Unscheduled", "Alpha", "Beta", "Zeta"]

    def test_resolution_is_deterministic(self):
        block = _block("Morning", "06:00")
        templates = [_template(f"T{i}", [1], block=block) for i in range(5)]
        first = resolve_tasklists_for_day(templates, [block], LOCATION, MONDAY, "UTC")
        second = resolve_tasklists_for_day(list(reversed(templates)), [block], LOCATION, MONDAY, "UTC")
        assert [t.id for t in first] == [t.id for t in second]

    def test_tasks_sorted_by_priority_then_position(self):
        tasks = [
            CheckboxTask(id=uuid.uuid4(), title="Low", priority=4, position=0),
            CheckboxTask(id=uuid.uuid4(), title="Critical", priority=1, position=5),
            CheckboxTask(id=uuid.uuid4(), title="Normal B", priority=3, position=2),
            CheckboxTask(id=uuid.uuid4(), title="Normal A", priority=3, position=1),
        ]
        [tasklist] = resolve_tasklists_for_day([_template("T", [1], tasks=tasks)], [], LOCATION, MONDAY, "UTC")
        assert [t.title for t in tasklist.tasks] == ["Critical", "Normal A", "Normal B", "Low"]

    def test_tasklist_carries_its_time_block(self):
        block = _block("Morning", "06:00")
        [tasklist] = resolve_tasklists_for_day([_template("T", [1], block=block)], [block], LOCATION, MONDAY, "UTC")
        assert tasklist.time_block.name == "Morning"


# ---------------------------------------------------------------------------
# Integration Tests: Database-backed loading
# ---------------------------------------------------------------------------

class TestLoading:
    @pytest.mark.asyncio
    async def test_monday_resolves_both_templates(self, session, world):
        location = await get_location_or_404(session, world.location_id, world.org_id)
        day = await load_tasklists_for_day(session, world.org_id, location, MONDAY)
        assert day.weekday == 1
        assert day.date == "2026-10-19"
        assert [t.name for t in day.tasklists] == ["Opening Checks", "Closing Checks"]

    @pytest.mark.asyncio
    async def test_tuesday_resolves_opening_only(self, session, world):
        location = await get_location_or_404(session, world.location_id, world.org_id)
        day = await load_tasklists_for_day(session, world.org_id, location, TUESDAY)
        assert [t.name for t in day.tasklists] == ["Opening Checks"]

    @pytest.mark.asyncio
    async def test_unscheduled_tasklist_is_404(self, session, world):
        location = await get_location_or_404(session, world.location_id, world.org_id)
        with pytest.raises(HTTPException) as exc:
            await get_tasklist_or_404(session, world.org_id, location, world.closing_id, TUESDAY)
        assert exc.value.status_code == 404

    @pytest.mark.asyncio
    async def test_location_of_other_org_is_404(self, session, world):
        with pytest.raises(HTTPException) as exc:
            await get_location_or_404(session, world.location_id, uuid.uuid4())
        assert exc.value.status_code == 404
