"""
Seed Admin User

Creates the first admin account for the UMS API. Admin endpoints have no
sign-up flow, so run this once per environment.

Usage:
    cd apps/api
    python scripts/seed_admin.py --email admin@example.edu --name "Registrar"

The password is read from --password or ADMIN_PASSWORD.
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add the src directory to the path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ums.core.config import settings
from ums.modules.academics import models as academics_models  # noqa: F401 - registers tables
from ums.modules.users import UserRepository, UserRole


async def seed_admin(email: str, password: str, name: str) -> None:
    """Create the admin user if no account owns ``email``."""
    engine = create_async_engine(settings.database_url, echo=False)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with async_session() as db:
            existing_user = await UserRepository.get_by_email(db, email)
            if existing_user:
                print(f"Account already exists: {existing_user.email}")
                print(f"  ID: {existing_user.id}")
                print(f"  Role: {existing_user.role.value}")
                return

            admin_user = await UserRepository.create(
                db,
                name=name,
                email=email,
                password=password,
                role=UserRole.ADMIN,
            )
            await db.commit()

            print("Admin created successfully!")
            print(f"  Email: {admin_user.email}")
            print(f"  Name: {admin_user.name}")
            print(f"  ID: {admin_user.id}")
    finally:
        await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Create the first UMS admin account.")
    parser.add_argument("--email", default=os.environ.get("ADMIN_EMAIL"))
    parser.add_argument("--password", default=os.environ.get("ADMIN_PASSWORD"))
    parser.add_argument("--name", default=os.environ.get("ADMIN_NAME", "Administrator"))
    args = parser.parse_args()

    if not args.email or not args.password:
        parser.error("--email and --password (or ADMIN_EMAIL / ADMIN_PASSWORD) are required")

    asyncio.run(seed_admin(args.email, args.password, args.name))


if __name__ == "__main__":
    main()
