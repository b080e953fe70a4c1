"""
Database initialization script.
Run this to recreate all tables and optionally seed an admin account:

    python -m quicksnack.db.init_db --admin-email admin@quicksnack.in --admin-password secret123
"""
import argparse
import asyncio
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from quicksnack.core.config import settings
from quicksnack.core.security import get_password_hash
from quicksnack.models.base import Base
from quicksnack.models.user import User, UserRole


async def create_admin(
    db: AsyncSession,
    email: str,
    password: str,
    name: str = "Admin",
    phone: str = "0000000000",
) -> User:
    """Create a verified admin, or promote the existing account."""
    email = email.strip().lower()
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()

    if user is None:
        user = User(email=email, name=name, phone=phone)
        db.add(user)

    user.password_hash = get_password_hash(password)
    user.is_verified = True
    user.role = UserRole.ADMIN
    await db.commit()
    await db.refresh(user)
    return user


async def init_db(admin_email: Optional[str] = None, admin_password: Optional[str] = None):
    """Initialize database with all tables."""
    engine = create_async_engine(settings.DATABASE_URL, echo=True)

    async with engine.begin() as conn:
        # Drop all tables (be careful in production!)
        await conn.run_sync(Base.metadata.drop_all)

        # Create all tables
        await conn.run_sync(Base.metadata.create_all)

    if admin_email and admin_password:
        session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with session_maker() as db:
            admin = await create_admin(db, admin_email, admin_password)
            print(f"Admin account ready: {admin.email}")

    await engine.dispose()
    print("Database initialized successfully!")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Recreate QuickSnack tables")
    parser.add_argument("--admin-email")
    parser.add_argument("--admin-password")
    args = parser.parse_args()
    asyncio.run(init_db(args.admin_email, args.admin_password))
