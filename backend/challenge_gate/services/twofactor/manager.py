"""ChallengeManager: resolves a user's providers and verifies challenges."""

import logging
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from challenge_gate.config import settings
from challenge_gate.core.logging_config import get_logger
from challenge_gate.core.session import LoginSession
from challenge_gate.crud.twofactor import provider_registry_crud
from challenge_gate.models.user import User
from challenge_gate.services.twofactor.base import LoginSetup, ProviderSet, TwoFactorProvider
from challenge_gate.services.twofactor.providers.backup_codes import BackupCodesProvider
from challenge_gate.services.twofactor.providers.totp import TotpProvider

logger = logging.getLogger(__name__)
audit_logger = get_logger("challenge_gate.audit")

# Set by the password step while the second factor is outstanding
SESSION_KEY_UID = "two_factor_auth_uid"
# Set once the second factor has been verified
SESSION_KEY_PASSED = "two_factor_auth_passed"

PROVIDER_FACTORIES: dict[str, Callable[[], TwoFactorProvider]] = {
    "totp": TotpProvider,
    "backup_codes": BackupCodesProvider,
}

# Module-level singleton (built lazily on first request)
_providers: Optional[list[TwoFactorProvider]] = None


class ChallengeManager:
    """Per-request facade over the registered providers.

    The provider registry table is a cache of each provider's own
    ``is_enabled_for`` answer. Providers without a registry row are asked
    once and the answer is persisted.
    """

    def __init__(
        self,
        db: AsyncSession,
        providers: list[TwoFactorProvider],
        session: LoginSession,
    ) -> None:
        self.db = db
        self.providers = providers
        self.session = session

    async def _fix_missing_provider_states(
        self, states: dict[str, bool], user: User
    ) -> dict[str, bool]:
        fixed = dict(states)
        for provider in self.providers:
            if provider.provider_id in fixed:
                continue
            enabled = await provider.is_enabled_for(self.db, user)
            await provider_registry_crud.set_enabled(self.db, user.id, provider.provider_id, enabled)
            fixed[provider.provider_id] = enabled
        return fixed

    async def get_provider_set(self, user: User) -> ProviderSet:
        """Enabled providers in registration order, plus the missing-provider flag."""
        states = await provider_registry_crud.get_provider_states(self.db, user.id)
        states = await self._fix_missing_provider_states(states, user)

        enabled = tuple(p for p in self.providers if states.get(p.provider_id, False))
        enabled_ids = {p.provider_id for p in enabled}
        missing = sorted(
            provider_id
            for provider_id, is_enabled in states.items()
            if is_enabled and provider_id not in enabled_ids
        )
        if missing:
            logger.warning(
                "User %s has enabled two-factor providers that are not available: %s",
                user.uid,
                ", ".join(missing),
            )

        return ProviderSet(providers=enabled, provider_missing=bool(missing))

    async def get_provider(self, user: User, provider_id: str) -> Optional[TwoFactorProvider]:
        provider_set = await self.get_provider_set(user)
        return provider_set.get_provider(provider_id)

    async def get_login_setup_providers(self, user: User) -> list[TwoFactorProvider]:
        """Providers the user can still set up during login."""
        provider_set = await self.get_provider_set(user)
        return [
            provider
            for provider in self.providers
            if provider.capabilities.supports_login_setup
            and provider_set.get_provider(provider.provider_id) is None
        ]

    async def get_challenge_template(self, provider: TwoFactorProvider, user: User) -> str:
        return await provider.get_template(self.db, user)

    async def get_login_setup(self, provider: TwoFactorProvider, user: User) -> Optional[LoginSetup]:
        return await provider.get_login_setup(self.db, user)

    async def verify_challenge(self, provider_id: str, user: User, challenge: str) -> bool:
        """
        Verify ``challenge`` with the named provider.

        Returns:
            True if the second factor is satisfied

        Raises:
            TwoFactorException: If the provider rejects the challenge with a
                message for the user
        """
        provider = await self.get_provider(user, provider_id)
        if provider is None:
            return False

        passed = await provider.verify_challenge(self.db, user, challenge)
        if passed:
            await self.session.remove(SESSION_KEY_UID)
            await self.session.set(SESSION_KEY_PASSED, True)
            audit_logger.info("two_factor_challenge_passed", uid=user.uid, provider=provider_id)
        return passed

    async def activate_provider(self, user: User, provider_id: str, payload: str) -> bool:
        """Complete login-time setup of a provider that is not enabled yet."""
        for provider in await self.get_login_setup_providers(user):
            if provider.provider_id == provider_id:
                activated = await provider.activate_at_login(self.db, user, payload)
                if activated:
                    audit_logger.info("two_factor_provider_activated", uid=user.uid, provider=provider_id)
                return activated
        return False


def build_providers(names: Optional[list[str]] = None) -> list[TwoFactorProvider]:
    """Construct the ordered provider list from ENABLED_PROVIDERS."""
    providers: list[TwoFactorProvider] = []
    seen: set[str] = set()

    for name in names if names is not None else settings.ENABLED_PROVIDERS:
        name = name.strip().lower()
        factory = PROVIDER_FACTORIES.get(name)
        if factory is None:
            logger.warning("Two-factor providers: unknown provider %r, skipping", name)
            continue
        if name in seen:
            continue
        seen.add(name)
        providers.append(factory())
        logger.info("Two-factor providers: registered %s", name)

    if not providers:
        logger.warning("Two-factor providers: none registered, every login will report missing providers")

    return providers


def get_providers() -> list[TwoFactorProvider]:
    """Return the singleton provider list, building it on first call."""
    global _providers
    if _providers is None:
        _providers = build_providers()
    return _providers


def reset_providers() -> None:
    """Reset the singleton list (used in tests to re-read config)."""
    global _providers
    _providers = None
