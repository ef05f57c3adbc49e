"""Database models."""

from challenge_gate.models.twofactor import BackupCode, TotpSecret, TotpState, TwoFactorProviderState
from challenge_gate.models.user import User

__all__ = [
    "User",
    "TwoFactorProviderState",
    "TotpSecret",
    "TotpState",
    "BackupCode",
]
