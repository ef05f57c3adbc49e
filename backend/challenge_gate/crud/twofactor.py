"""CRUD operations for the per-user two-factor provider registry."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from challenge_gate.models.twofactor import TwoFactorProviderState


class ProviderRegistryCRUD:
    """Reads and writes which providers a user has enabled."""

    @staticmethod
    async def get_provider_states(db: AsyncSession, user_id: UUID) -> dict[str, bool]:
        """Return ``{provider_id: enabled}`` for every provider the user has a row for."""
        result = await db.execute(
            select(TwoFactorProviderState).where(TwoFactorProviderState.user_id == user_id)
        )
        return {row.provider_id: row.enabled for row in result.scalars().all()}

    @staticmethod
    async def set_enabled(
        db: AsyncSession, user_id: UUID, provider_id: str, enabled: bool
    ) -> TwoFactorProviderState:
        """Create or update the user's row for ``provider_id``."""
        result = await db.execute(
            select(TwoFactorProviderState).where(
                TwoFactorProviderState.user_id == user_id,
                TwoFactorProviderState.provider_id == provider_id,
            )
        )
        state = result.scalar_one_or_none()
        if state is None:
            state = TwoFactorProviderState(user_id=user_id, provider_id=provider_id)
            db.add(state)
        state.enabled = enabled
        await db.commit()
        await db.refresh(state)
        return state

    async def enable(self, db: AsyncSession, user_id: UUID, provider_id: str) -> TwoFactorProviderState:
        return await self.set_enabled(db, user_id, provider_id, True)

    async def disable(self, db: AsyncSession, user_id: UUID, provider_id: str) -> TwoFactorProviderState:
        return await self.set_enabled(db, user_id, provider_id, False)


provider_registry_crud = ProviderRegistryCRUD()
