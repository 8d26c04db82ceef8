#!/usr/bin/env python3
"""Seed a development database with a test organization, roster, location and tasklists.

Usage:
    uv run python scripts/seed_dev_data.py [--create-tables]

Requires SC_DATABASE_URL (or defaults to localhost).

Roster (password "password123" for the first two):
    admin@corner.dev    administrator  PIN 1111
    manager@corner.dev  manager        PIN 2222
    sam@corner.dev      employee       PIN 3333
    kiosk@corner.dev    employee       (device account, no PIN)
"""

import argparse
import asyncio
import uuid

from sqlmodel import select

from app.core.auth import hash_password
from app.core.database import get_session_context, init_db
from app.models import ChecklistTemplate, Location, Membership, Organization, TemplateTask, TimeBlock, User
from app.services.roster import pin_digest

# Deterministic UUIDs (version 4 layout) for reproducibility
ORG_ID = uuid.UUID("00000000-0000-4000-8000-000000000001")
LOCATION_ID = uuid.UUID("00000000-0000-4000-8000-000000000100")
BLOCK_IDS = [uuid.UUID(f"00000000-0000-4000-8000-0000000002{i:02d}") for i in range(3)]
TEMPLATE_IDS = [uuid.UUID(f"00000000-0000-4000-8000-0000000003{i:02d}") for i in range(2)]

PEOPLE = [
    # (user id, email, display name, role, PIN, password)
    (uuid.UUID("00000000-0000-4000-8000-000000000010"), "admin@corner.dev", "Avery", "administrator", "1111", "password123"),
    (uuid.UUID("00000000-0000-4000-8000-000000000011"), "manager@corner.dev", "Morgan", "manager", "2222", "password123"),
    (uuid.UUID("00000000-0000-4000-8000-000000000012"), "sam@corner.dev", "Sam", "employee", "3333", None),
    (uuid.UUID("00000000-0000-4000-8000-000000000013"), "kiosk@corner.dev", "Front Counter Kiosk", "employee", None, "kiosk-password"),
]

BLOCKS = [("Opening", "06:00", "10:00"), ("Midday", "11:00", "14:00"), ("Closing", "20:00", "23:00")]

TEMPLATES = [
    {
        "name": "Opening Checks",
        "block": 0,
        "recurrence": [0, 1, 2, 3, 4, 5, 6],
        "tasks": [
            {"title": "Walk-in fridge temperature", "category": "Food Safety", "input_type": "number",
             "min": 0, "max": 5, "priority": 1},
            {"title": "Sanitizer buckets prepared", "category": "Food Safety", "photo_required": True, "priority": 2},
            {"title": "Front door unlocked", "category": "Facilities", "allow_na": False},
            {"title": "Float counted", "category": "Cash", "input_type": "text", "note_required": True},
        ],
    },
    {
        "name": "Closing Checks",
        "block": 2,
        "recurrence": [1, 3, 5],
        "tasks": [
            {"title": "Fryer oil filtered", "category": "Kitchen", "photo_required": True},
            {"title": "Freezer temperature", "category": "Food Safety", "input_type": "number",
             "min": -25, "max": -15, "priority": 1},
            {"title": "Floors mopped", "category": "Cleaning"},
        ],
    },
]


async def seed(create_tables: bool) -> None:
    if create_tables:
        await init_db()

    async with get_session_context() as session:
        if (await session.execute(select(Organization).where(Organization.id == ORG_ID))).scalar_one_or_none():
            print("Seed data already present.")
            return

        session.add(Organization(id=ORG_ID, name="Corner Bakery", slug="corner-bakery", status="active"))
        session.add(Location(id=LOCATION_ID, org_id=ORG_ID, name="Main Street", timezone="America/New_York"))

        for user_id, email, name, role, pin, password in PEOPLE:
            session.add(User(
                id=user_id,
                email=email,
                display_name=name,
                password_hash=hash_password(password) if password else None,
            ))
            session.add(Membership(
                user_id=user_id,
                org_id=ORG_ID,
                role=role,
                display_name=name,
                pin_digest=pin_digest(pin) if pin else None,
            ))

        for block_id, (name, start, end) in zip(BLOCK_IDS, BLOCKS):
            session.add(TimeBlock(id=block_id, org_id=ORG_ID, name=name, start_time=start, end_time=end))

        for template_id, definition in zip(TEMPLATE_IDS, TEMPLATES):
            session.add(ChecklistTemplate(
                id=template_id,
                org_id=ORG_ID,
                location_id=LOCATION_ID,
                name=definition["name"],
                time_block_id=BLOCK_IDS[definition["block"]],
                recurrence=definition["recurrence"],
            ))
            for position, task in enumerate(definition["tasks"]):
                session.add(TemplateTask(template_id=template_id, org_id=ORG_ID, position=position, **task))

        await session.flush()

    print("Seeded organization 'corner-bakery' (location Main Street, 2 templates, 4 members).")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed ShiftCheck development data.")
    parser.add_argument("--create-tables", action="store_true", help="Create tables first (no migrations)")
    args = parser.parse_args()
    asyncio.run(seed(args.create_tables))
