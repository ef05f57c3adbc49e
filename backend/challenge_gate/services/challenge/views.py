"""View models returned by the challenge orchestrator."""

from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, Field

from challenge_gate.services.twofactor.base import TwoFactorProvider


class ProviderInfo(BaseModel):
    """Public description of a provider."""

    id: str
    display_name: str
    description: str = ""

    @classmethod
    def from_provider(cls, provider: TwoFactorProvider) -> "ProviderInfo":
        return cls(
            id=provider.provider_id,
            display_name=provider.display_name,
            description=provider.description,
        )


class SelectionView(BaseModel):
    """Provider picker."""

    providers: list[ProviderInfo]
    backup_provider: Optional[ProviderInfo] = None
    provider_missing: bool = False
    redirect_url: Optional[str] = None
    logout_url: str
    has_setup_providers: bool = False


class ChallengeView(BaseModel):
    """One provider's challenge page."""

    error: bool = False
    error_message: Optional[str] = None
    provider: ProviderInfo
    backup_provider: Optional[ProviderInfo] = None
    logout_url: str
    redirect_url: Optional[str] = None
    template: str
    # Sent as a response header, not in the body
    content_security_policy: Optional[str] = Field(default=None, exclude=True)


class SetupSelectionView(BaseModel):
    """Providers that can be set up during login."""

    providers: list[ProviderInfo]
    logout_url: str
    redirect_url: Optional[str] = None


class SetupView(BaseModel):
    """One provider's setup page."""

    provider: ProviderInfo
    logout_url: str
    redirect_url: Optional[str] = None
    template: str
    setup: dict[str, Any] = Field(default_factory=dict)
    activate_url: Optional[str] = None


@dataclass(frozen=True)
class Redirect:
    """Instruction to send the browser elsewhere.

    ``route`` and ``params`` name the target when it is one of our routes.
    """

    url: str
    route: Optional[str] = None
    params: dict[str, Any] = field(default_factory=dict)
