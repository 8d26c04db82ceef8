"""
Script to create an initial administrator with a password (and optional PIN) for local testing.
"""

import asyncio
import argparse
from typing import Optional

import uuid
from sqlmodel import select

from app.core.auth import hash_password
from app.core.database import get_session_context
from app.models.membership import Membership
from app.models.organization import Organization
from app.models.user import User
from app.services.roster import is_well_formed_pin, pin_digest


async def create_admin(email: str, password: str, org_slug: str, pin: Optional[str] = None):
    if pin is not None and not is_well_formed_pin(pin):
        raise SystemExit(f"PIN must be digits only, of the configured length: {pin!r}")

    async with get_session_context() as session:
        # 1. Ensure the organization exists
        result = await session.execute(select(Organization).where(Organization.slug == org_slug))
        org = result.scalar_one_or_none()

        if not org:
            org = Organization(
                id=uuid.uuid4(),
                name=org_slug.replace("-", " ").title(),
                slug=org_slug,
                status="active",
                settings={},
            )
            session.add(org)
            print(f"Created organization {org_slug}.")

        # 2. Check if user already exists
        result = await session.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        if not user:
            user = User(
                id=uuid.uuid4(),
                email=email,
                display_name=email.split("@")[0],
                password_hash=hash_password(password),
            )
            session.add(user)
            print(f"Created user: {email}")
        else:
            print(f"User {email} already exists.")

        await session.flush()

        # 3. Ensure membership exists
        result = await session.execute(
            select(Membership).where(Membership.user_id == user.id, Membership.org_id == org.id)
        )
        membership = result.scalar_one_or_none()

        if not membership:
            membership = Membership(
                user_id=user.id,
                org_id=org.id,
                role="administrator",
                display_name=user.display_name,
            )
            session.add(membership)
            print(f"Added {email} as administrator to {org_slug}.")

        if pin is not None:
            membership.pin_digest = pin_digest(pin)
            print("PIN set.")

    print("Done.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create a local admin user.")
    parser.add_argument("--email", required=True, help="Email address for the user")
    parser.add_argument("--password", required=True, help="Password for the user")
    parser.add_argument("--org", default="default", help="Organization slug (created if missing)")
    parser.add_argument("--pin", default=None, help="Optional signoff PIN")

    args = parser.parse_args()

    asyncio.run(create_admin(args.email, args.password, args.org, args.pin))
