"""CRUD operations for users."""

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from challenge_gate.models.user import User


class UserCRUD:
    """CRUD operations for User model."""

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: UUID) -> Optional[User]:
        """Get user by ID."""
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_uid(db: AsyncSession, uid: str) -> Optional[User]:
        """Get user by login name."""
        result = await db.execute(select(User).where(User.uid == uid))
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        uid: str,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> User:
        """Create a new user."""
        user = User(uid=uid, email=email, display_name=display_name)
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user


user_crud = UserCRUD()
