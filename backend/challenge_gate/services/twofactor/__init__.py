"""Two-factor provider package: provider framework and manager."""

from challenge_gate.services.twofactor.base import (
    BACKUP_CODES_PROVIDER_ID,
    LoginSetup,
    ProviderCapabilities,
    ProviderSet,
    TwoFactorProvider,
)
from challenge_gate.services.twofactor.exceptions import TwoFactorException
from challenge_gate.services.twofactor.manager import (
    ChallengeManager,
    build_providers,
    get_providers,
    reset_providers,
)
from challenge_gate.services.twofactor.providers.backup_codes import BackupCodesProvider
from challenge_gate.services.twofactor.providers.totp import TotpProvider

__all__ = [
    "BACKUP_CODES_PROVIDER_ID",
    "LoginSetup",
    "ProviderCapabilities",
    "ProviderSet",
    "TwoFactorProvider",
    "TwoFactorException",
    "ChallengeManager",
    "build_providers",
    "get_providers",
    "reset_providers",
    "TotpProvider",
    "BackupCodesProvider",
]
