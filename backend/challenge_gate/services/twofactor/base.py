"""Base classes for two-factor providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from challenge_gate.core.csp import ContentSecurityPolicy
from challenge_gate.models.user import User

BACKUP_CODES_PROVIDER_ID = "backup_codes"


@dataclass(frozen=True)
class ProviderCapabilities:
    """Optional features a provider implements.

    ``supports_custom_csp``: ``get_csp()`` returns a policy for the challenge page.
    ``supports_login_setup``: the provider can be set up during login
    (``get_login_setup()`` / ``activate_at_login()``).
    """

    supports_custom_csp: bool = False
    supports_login_setup: bool = False


@dataclass(frozen=True)
class LoginSetup:
    """What a provider shows during first-time setup at login."""

    body: str  # HTML fragment
    data: dict[str, Any] = field(default_factory=dict)


class TwoFactorProvider(ABC):
    """Abstract base for all second-factor providers.

    Providers are stateless; per-user state lives in the database and is
    reached through the ``db`` session passed to every call.
    """

    provider_id: ClassVar[str]
    display_name: ClassVar[str]
    description: ClassVar[str] = ""
    capabilities: ClassVar[ProviderCapabilities] = ProviderCapabilities()

    @abstractmethod
    async def is_enabled_for(self, db: AsyncSession, user: User) -> bool:
        """Whether the user has this provider configured and active."""

    @abstractmethod
    async def get_template(self, db: AsyncSession, user: User) -> str:
        """HTML fragment for the challenge form.

        The form must post a ``challenge`` field; the orchestrator adds
        ``redirect_url`` itself.
        """

    @abstractmethod
    async def verify_challenge(self, db: AsyncSession, user: User, challenge: str) -> bool:
        """Check the user's response.

        Return False for a plain mismatch. Raise ``TwoFactorException`` when
        the user should be told something specific.
        """

    def get_csp(self) -> Optional[ContentSecurityPolicy]:
        """Policy for the challenge page, when ``supports_custom_csp`` is set."""
        return None

    async def get_login_setup(self, db: AsyncSession, user: User) -> Optional[LoginSetup]:
        """Setup UI, when ``supports_login_setup`` is set."""
        return None

    async def activate_at_login(self, db: AsyncSession, user: User, payload: str) -> bool:
        """Finish setup with the user's first response, when ``supports_login_setup`` is set."""
        return False


@dataclass(frozen=True)
class ProviderSet:
    """Providers valid for one user at one login attempt.

    ``provider_missing`` is set when the user enabled a provider that this
    deployment no longer has (e.g. it was removed from ENABLED_PROVIDERS).
    """

    providers: tuple[TwoFactorProvider, ...] = ()
    provider_missing: bool = False

    def get_provider(self, provider_id: str) -> Optional[TwoFactorProvider]:
        for provider in self.providers:
            if provider.provider_id == provider_id:
                return provider
        return None

    def get_providers(self) -> list[TwoFactorProvider]:
        return list(self.providers)
