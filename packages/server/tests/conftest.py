"""
Shared fixtures for server tests.

Each test gets its own SQLite database file, a seeded tenant (roster, one
location, two templates) and a Redis client replaced by an AsyncMock.
"""

import os
import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

os.environ.setdefault("SC_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SC_SECRET_KEY", "test-secret-key-for-shiftcheck-tests")
os.environ.setdefault("SC_LOG_FORMAT", "console")

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.auth import create_jwt, hash_password
from app.core.database import get_session, init_db, make_engine, make_session_factory
from app.models import ChecklistTemplate, Location, Membership, Organization, TemplateTask, TimeBlock, User
from app.services.roster import pin_digest
from app.storage.evidence import LocalEvidenceStore, get_evidence_store

PINS = {"admin": "1111", "manager": "2222", "employee": "3333", "former": "4444"}
PASSWORD = "password123"
PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture
async def engine(tmp_path):
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'shiftcheck.db'}")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def fake_redis():
    redis = AsyncMock()
    redis.exists.return_value = 0
    redis.get.return_value = None
    redis.incr.return_value = 1
    redis.ping.return_value = True
    with patch("app.core.events.get_redis", AsyncMock(return_value=redis)), \
         patch("app.core.auth.get_redis", AsyncMock(return_value=redis)):
        yield redis


def _task(template_id, org_id, position, title, **kwargs) -> TemplateTask:
    return TemplateTask(
        id=uuid.uuid4(), template_id=template_id, org_id=org_id, position=position, title=title, **kwargs
    )


@pytest.fixture
async def world(session_factory):
    """A seeded tenant: roster with PINs, one UTC location, an Opening and a Closing template."""
    w = SimpleNamespace()
    w.org_id = uuid.uuid4()
    w.org_slug = "corner-bakery"
    w.location_id = uuid.uuid4()
    w.block_ids = {"opening": uuid.uuid4(), "closing": uuid.uuid4()}
    w.opening_id = uuid.uuid4()
    w.closing_id = uuid.uuid4()
    w.users = {name: uuid.uuid4() for name in ("admin", "manager", "employee", "former", "kiosk")}
    w.pins = dict(PINS)

    async with session_factory() as s:
        s.add(Organization(id=w.org_id, name="Corner Bakery", slug=w.org_slug, status="active"))
        s.add(Location(id=w.location_id, org_id=w.org_id, name="Main Street", timezone="UTC"))
        s.add(TimeBlock(id=w.block_ids["opening"], org_id=w.org_id, name="Opening", start_time="06:00", end_time="10:00"))
        s.add(TimeBlock(id=w.block_ids["closing"], org_id=w.org_id, name="Closing", start_time="20:00", end_time="23:00"))

        roles = {
            "admin": "administrator",
            "manager": "manager",
            "employee": "employee",
            "former": "employee",
            "kiosk": "employee",
        }
        for name, user_id in w.users.items():
            s.add(User(
                id=user_id,
                email=f"{name}@corner.dev",
                display_name=name.title(),
                password_hash=PASSWORD_HASH,
            ))
            s.add(Membership(
                user_id=user_id,
                org_id=w.org_id,
                role=roles[name],
                display_name=name.title(),
                pin_digest=pin_digest(PINS[name]) if name in PINS else None,
                is_active=name != "former",
            ))

        s.add(ChecklistTemplate(
            id=w.opening_id,
            org_id=w.org_id,
            location_id=w.location_id,
            name="Opening Checks",
            time_block_id=w.block_ids["opening"],
            recurrence=[0, 1, 2, 3, 4, 5, 6],
        ))
        opening = [
            _task(w.opening_id, w.org_id, 0, "Front door unlocked", allow_na=False),
            _task(w.opening_id, w.org_id, 1, "Walk-in fridge temperature", input_type="number", min=0, max=5, priority=1),
            _task(w.opening_id, w.org_id, 2, "Sanitizer buckets prepared", photo_required=True),
            _task(w.opening_id, w.org_id, 3, "Float counted", input_type="text", note_required=True),
        ]
        s.add(ChecklistTemplate(
            id=w.closing_id,
            org_id=w.org_id,
            location_id=w.location_id,
            name="Closing Checks",
            time_block_id=w.block_ids["closing"],
            recurrence=[1, 3, 5],
        ))
        closing = [
            _task(w.closing_id, w.org_id, i, f"Closing task {i + 1}") for i in range(5)
        ]
        for t in opening + closing:
            s.add(t)
        await s.commit()

    w.opening_tasks = {
        "door": opening[0].id,
        "fridge": opening[1].id,
        "sanitizer": opening[2].id,
        "float": opening[3].id,
    }
    w.closing_tasks = [t.id for t in closing]
    return w


@pytest.fixture
def headers(world):
    """Bearer headers for one of the seeded users: `headers("manager")`."""

    def _headers(who: str) -> dict:
        token, _ = create_jwt(
            user_id=world.users[who],
            org_ids=[str(world.org_id)],
            active_org=str(world.org_id),
            role="employee",
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
async def client(session_factory, fake_redis, tmp_path):
    from app.main import app

    async def _session_override():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    store = LocalEvidenceStore(tmp_path / "evidence", "http://test")
    app.dependency_overrides[get_session] = _session_override
    app.dependency_overrides[get_evidence_store] = lambda: store
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
