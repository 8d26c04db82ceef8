"""
Shared fixtures for kiosk tests.

FakeServer answers the kiosk's API calls in memory through
httpx.MockTransport, so flows run end to end without a real server.
"""

from __future__ import annotations

import json
import re
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from shiftcheck_kiosk.client import ShiftCheckClient
from shiftcheck_kiosk.config import KioskConfig
from shiftcheck_kiosk.kiosk import Kiosk
from shiftcheck_shared.schemas.tasklists import Tasklist

TODAY = "2026-10-19"
GOOD_PIN = "3333"

_ORG = r"/api/v1/orgs/[^/]+"
_TASKLIST = _ORG + r"/locations/[^/]+/tasklists/(?P<tl>[^/]+)"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json(status: int, body) -> httpx.Response:
    return httpx.Response(status, json=body)


class FakeServer:
    """Minimal in-memory stand-in for the tasklist, signoff and evidence endpoints."""

    def __init__(self, org_id: uuid.UUID, location_id: uuid.UUID, tasklists: list[Tasklist]):
        self.org_id = org_id
        self.location_id = location_id
        self.tasklists = {str(t.id): t for t in tasklists}
        self.actor = {"user_id": str(uuid.uuid4()), "display_name": "Erin Employee", "role": "employee"}
        self.rows: dict[str, dict[str, dict]] = {}
        self.submissions: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_next: int | None = None
        self._uploads = 0

    # --- Helpers used by tests ---

    def send_back(self, tasklist_id, task_id, note: str) -> None:
        row = self.rows[str(tasklist_id)][str(task_id)]
        row.update(review_status="Rework", rework_count=row["rework_count"] + 1, review_note=note, updated_at=_now())
        self.submissions[str(tasklist_id)]["status"] = "Rework"

    def count(self, method: str, suffix: str) -> int:
        return sum(1 for m, p in self.calls if m == method and p.endswith(suffix))

    # --- Routing ---

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))

        if self.fail_next is not None:
            status, self.fail_next = self.fail_next, None
            return _json(status, {"detail": "unavailable"})

        if request.method == "GET" and re.fullmatch(_ORG + r"/locations/[^/]+/tasklists", path):
            return _json(200, {
                "location_id": str(self.location_id),
                "date": TODAY,
                "timezone": "UTC",
                "weekday": 1,
                "tasklists": [t.model_dump(mode="json") for t in self.tasklists.values()],
            })
        m = re.fullmatch(_TASKLIST + r"/state", path)
        if m:
            return _json(200, self._state(m["tl"]))
        m = re.fullmatch(_TASKLIST + r"/tasks/(?P<task>[^/]+)/complete", path)
        if m:
            return self._complete(m["tl"], m["task"], json.loads(request.content))
        m = re.fullmatch(_TASKLIST + r"/signoff", path)
        if m:
            return self._signoff(m["tl"], json.loads(request.content))
        if re.fullmatch(_ORG + r"/evidence/", path):
            self._uploads += 1
            return _json(201, {"path": f"{self.org_id}/x/y/{self._uploads}_abcd1234.jpg", "url": "http://test/evidence/t"})
        m = re.fullmatch(_ORG + r"/submissions/(?P<sid>[^/]+)/resubmit", path)
        if m:
            return self._resubmit(m["sid"])
        if re.fullmatch(_ORG + r"/pin/verify", path):
            pin = json.loads(request.content)["pin"]
            return _json(200, {"actor": self.actor if pin == GOOD_PIN else None})
        return _json(404, {"detail": "Not found"})

    def _rejected(self) -> httpx.Response:
        return _json(403, {"detail": {"code": "PIN_REJECTED", "message": "PIN not recognised", "task_ids": None}})

    def _submission(self, tl: str) -> dict:
        if tl not in self.submissions:
            self.submissions[tl] = {"id": str(uuid.uuid4()), "status": "Pending", "signed_by": None}
            self.rows[tl] = {}
        return self.submissions[tl]

    def _row(self, tl: str, task_id: str, draft: dict) -> dict:
        submission = self._submission(tl)
        current = self.rows[tl].get(task_id)
        value = draft.get("value")
        return {
            "submission_id": submission["id"],
            "task_id": task_id,
            "status": "Complete",
            "review_status": "Rework" if current and current["review_status"] == "Rework" else "Pending",
            "na": draft.get("na", False),
            "value": None if draft.get("na") else (str(value) if value is not None else "true"),
            "note": draft.get("note", ""),
            "photos": draft.get("photos", []),
            "rework_count": current["rework_count"] if current else 0,
            "review_note": current["review_note"] if current else None,
            "submitted_by": self.actor["user_id"],
            "updated_at": _now(),
        }

    def _state(self, tl: str) -> dict:
        submission = self.submissions.get(tl)
        return {
            "tasklist_id": tl,
            "location_id": str(self.location_id),
            "date": TODAY,
            "submission_id": submission["id"] if submission else None,
            "submission_status": submission["status"] if submission else None,
            "signed_by": submission["signed_by"] if submission else None,
            "tasks": list(self.rows.get(tl, {}).values()),
        }

    def _complete(self, tl: str, task_id: str, body: dict) -> httpx.Response:
        if body["pin"] != GOOD_PIN:
            return self._rejected()
        self._submission(tl)
        self.rows[tl][task_id] = self._row(tl, task_id, body["draft"])
        return _json(200, self._state(tl))

    def _signoff(self, tl: str, body: dict) -> httpx.Response:
        if body["pin"] != GOOD_PIN:
            return self._rejected()
        submission = self._submission(tl)
        for task_id, draft in body.get("drafts", {}).items():
            self.rows[tl].setdefault(task_id, self._row(tl, task_id, draft))
        submission["signed_by"] = self.actor["display_name"]
        return _json(200, self._submission_read(tl))

    def _submission_read(self, tl: str) -> dict:
        submission = self.submissions[tl]
        return {
            "id": submission["id"],
            "org_id": str(self.org_id),
            "tasklist_id": tl,
            "location_id": str(self.location_id),
            "date": TODAY,
            "status": submission["status"],
            "signed_by": submission["signed_by"],
            "tasks": list(self.rows[tl].values()),
        }

    def _resubmit(self, sid: str) -> httpx.Response:
        tl = next(k for k, s in self.submissions.items() if s["id"] == sid)
        moved = []
        for row in self.rows[tl].values():
            if row["review_status"] == "Rework":
                row.update(review_status="Pending", updated_at=_now())
                moved.append(row["task_id"])
        self.submissions[tl]["status"] = "Pending"
        return _json(200, {"submission": self._submission_read(tl), "resubmitted": moved, "still_rework": []})


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def ids():
    return SimpleNamespace(
        org=uuid.uuid4(),
        location=uuid.uuid4(),
        opening=uuid.uuid4(),
        door=uuid.uuid4(),
        fridge=uuid.uuid4(),
        sanitizer=uuid.uuid4(),
        closing=uuid.uuid4(),
        lights=uuid.uuid4(),
    )


@pytest.fixture
def opening(ids) -> Tasklist:
    return Tasklist.model_validate({
        "id": ids.opening,
        "location_id": ids.location,
        "name": "Opening",
        "tasks": [
            {"id": ids.door, "title": "Unlock door", "input_type": "checkbox", "allow_na": False},
            {"id": ids.fridge, "title": "Fridge temp", "input_type": "number", "min": 0, "max": 5, "priority": 1},
            {"id": ids.sanitizer, "title": "Sanitizer bucket", "input_type": "checkbox", "photo_required": True},
        ],
    })


@pytest.fixture
def closing(ids) -> Tasklist:
    return Tasklist.model_validate({
        "id": ids.closing,
        "location_id": ids.location,
        "name": "Closing",
        "tasks": [{"id": ids.lights, "title": "Lights off", "input_type": "checkbox"}],
    })


@pytest.fixture
def config(ids, monkeypatch) -> KioskConfig:
    monkeypatch.setenv("SHIFTCHECK_KIOSK_TOKEN", "device-token")
    return KioskConfig.model_validate({
        "server": {"url": "http://test"},
        "kiosk": {"org_slug": "corner-bakery", "location_id": str(ids.location)},
        "refresh": {"debounce_ms": 10},
    })


@pytest.fixture
def fake_server(ids, opening, closing) -> FakeServer:
    return FakeServer(ids.org, ids.location, [opening, closing])


@pytest.fixture
def listener():
    stub = MagicMock()
    stub.start = AsyncMock()
    stub.stop = AsyncMock()
    return stub


@pytest.fixture
async def kiosk(config, fake_server, listener):
    client = ShiftCheckClient(
        base_url="http://test",
        org_slug=config.kiosk.org_slug,
        location_id=config.kiosk.location_id,
        token="device-token",
        transport=httpx.MockTransport(fake_server.handler),
    )
    k = Kiosk(config, client=client, listener=listener)
    await k.start()
    yield k
    await k.stop()
