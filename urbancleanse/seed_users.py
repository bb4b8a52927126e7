"""
Database seeding script for development data.

Creates an OPERATOR, a CUSTOMER with two approved bins, one collector of each
worker role, and the waste type catalogue. Tokens for these principals are
issued by Identity & Access; ``--tokens`` prints local dev tokens instead.
"""

import asyncio
import sys

from sqlalchemy import select

from urbancleanse.app.core.jwt import create_access_token
from urbancleanse.app.db.session import AsyncSessionLocal, Base, engine
from urbancleanse.app.domain.scheduling.identifiers import new_bin_id
from urbancleanse.app.models.bin import Bin
from urbancleanse.app.models.enums import UserRole
from urbancleanse.app.models.user import User
from urbancleanse.app.services.catalog import seed_waste_types

# Register every table with Base before create_all
from urbancleanse.app.models import (  # noqa: F401
    alert, audit_log, collection, dlq, notification, route, route_bin_task, waste_request, waste_type,
)

SEED_USERS = [
    ("operator", "operator@urbancleanse.dev", "Operations Desk", UserRole.OPERATOR),
    ("customer", "customer@urbancleanse.dev", "Jane Customer", UserRole.CUSTOMER),
    ("collector1", "collector1@urbancleanse.dev", "Collector One", UserRole.WC1),
    ("collector2", "collector2@urbancleanse.dev", "Collector Two", UserRole.WC2),
    ("collector3", "collector3@urbancleanse.dev", "Collector Three", UserRole.WC3),
]


async def seed(print_tokens: bool = False):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("Starting seeding...")

        result = await db.execute(select(User).where(User.username == "operator"))
        if result.scalar_one_or_none():
            print("Users already exist, skipping user seeding")
        else:
            users = {}
            for username, email, name, role in SEED_USERS:
                user = User(username=username, email=email, name=name, role=role, is_active=True)
                db.add(user)
                users[username] = user
                print(f"Created {role.value} user ({username})")
            await db.flush()

            for area in ("Colombo 03", "Colombo 05"):
                db.add(Bin(
                    bin_id=new_bin_id(),
                    owner_id=users["customer"].id,
                    area=area,
                    is_active=True,
                    is_approved=True,
                ))
            await db.commit()
            print("Created 2 approved bins for customer")

        created = await seed_waste_types(db)
        print(f"Seeded {created} waste types")

        if print_tokens:
            result = await db.execute(select(User).order_by(User.id))
            for user in result.scalars().all():
                token = create_access_token(data={
                    "sub": user.username,
                    "user_id": user.id,
                    "role": user.role.value,
                    "is_active": user.is_active,
                })
                print(f"{user.username:12} {token}")

    print("Seeding completed")


if __name__ == "__main__":
    asyncio.run(seed(print_tokens="--tokens" in sys.argv))
