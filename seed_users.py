"""Seed one user per role for local development and list existing users."""

import asyncio
import sys

from sqlalchemy import select

from auth.principal import Role
from db import AsyncSessionLocal, init_db
from models.user import User

SEED_USERS = [
    ("admin@example.com", "Admin User", Role.ADMIN),
    ("em@example.com", "Engagement Manager", Role.ENGAGEMENT_MANAGER),
    ("rm@example.com", "Resource Manager", Role.RESOURCE_MANAGER),
]


async def seed_users():
    await init_db()
    async with AsyncSessionLocal() as db:
        for email, name, role in SEED_USERS:
            result = await db.execute(select(User).where(User.email == email))
            if result.scalar_one_or_none() is None:
                db.add(User(email=email, name=name, role=role.value, is_active=True))
        await db.commit()

        users_result = await db.execute(select(User).order_by(User.email))
        users = users_result.scalars().all()

        print("=" * 50)
        print("USERS")
        print("=" * 50)
        for u in users:
            print(f"  - {u.email}")
            print(f"    Name: {u.name}")
            print(f"    Role: {u.role}")
            print(f"    ID: {u.id}")
            print(f"    Active: {u.is_active}")
            print()


if __name__ == "__main__":
    # Fix for Windows asyncio
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(seed_users())
