"""Script to initialize the database.

Creates all tables and, optionally, a first admin account:

    python scripts/init_db.py --admin-email admin@example.com --admin-password secret
"""

import argparse
import asyncio

from clinic_backend.core.exceptions import ConflictException
from clinic_backend.core.security import get_password_hash
from clinic_backend.database import AsyncSessionLocal, engine
from clinic_backend.models import metadata
from clinic_backend.schemas.users import Role
from clinic_backend.services.appointment_store import AppointmentStore


async def init_db(admin_email: str | None = None, admin_password: str | None = None) -> None:
    """Initialize the database by creating all tables."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    print("✓ Database initialized successfully!")

    if admin_email and admin_password:
        store = AppointmentStore(AsyncSessionLocal)
        try:
            user = await store.create_user(
                {
                    "email": admin_email,
                    "full_name": "Administrator",
                    "role": Role.ADMIN,
                    "hashed_password": get_password_hash(admin_password),
                    "is_active": True,
                }
            )
            print(f"✓ Admin user created with ID {user.id}")
        except ConflictException:
            print(f"• Admin user {admin_email} already exists")

    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--admin-email")
    parser.add_argument("--admin-password")
    args = parser.parse_args()
    asyncio.run(init_db(args.admin_email, args.admin_password))
