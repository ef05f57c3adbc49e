"""Backup codes provider: single-use recovery codes."""

import logging
import secrets

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from challenge_gate.config import settings
from challenge_gate.crud.twofactor import provider_registry_crud
from challenge_gate.models.twofactor import BackupCode
from challenge_gate.models.user import User
from challenge_gate.services.twofactor.base import BACKUP_CODES_PROVIDER_ID, TwoFactorProvider
from challenge_gate.services.twofactor.exceptions import TwoFactorException
from challenge_gate.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

_CHALLENGE_TEMPLATE = """\
<form method="POST" class="challenge-form" data-provider="backup_codes">
  <label for="challenge">Enter one of your backup codes</label>
  <input type="text" id="challenge" name="challenge" autocomplete="off"
         maxlength="9" required autofocus>
  <button type="submit">Submit</button>
</form>"""

_hasher = PasswordHasher()


def _clean(code: str) -> str:
    """Codes verify with or without the hyphen and in any case."""
    return code.strip().replace("-", "").upper()


class BackupCodesProvider(TwoFactorProvider):
    """Fallback provider offered alongside the primary methods."""

    provider_id = BACKUP_CODES_PROVIDER_ID
    display_name = "Backup code"
    description = "Use backup code"

    def __init__(self, code_count: int | None = None) -> None:
        self.code_count = code_count or settings.BACKUP_CODE_COUNT

    @staticmethod
    def generate_codes(count: int) -> list[str]:
        """
        Generate backup codes.

        Returns:
            List of codes (format: XXXX-XXXX)
        """
        codes = []
        for _ in range(count):
            code = secrets.token_hex(4).upper()
            codes.append(f"{code[:4]}-{code[4:]}")
        return codes

    async def create_codes(self, db: AsyncSession, user: User) -> list[str]:
        """Replace the user's codes with a fresh set and return the plaintext once."""
        await db.execute(delete(BackupCode).where(BackupCode.user_id == user.id))

        codes = self.generate_codes(self.code_count)
        for code in codes:
            db.add(BackupCode(user_id=user.id, code_hash=_hasher.hash(_clean(code))))
        await db.commit()

        await provider_registry_crud.enable(db, user.id, self.provider_id)
        logger.info("Generated %d backup codes for user %s", len(codes), user.uid)
        return codes

    async def _get_codes(self, db: AsyncSession, user: User) -> list[BackupCode]:
        result = await db.execute(select(BackupCode).where(BackupCode.user_id == user.id))
        return list(result.scalars().all())

    async def is_enabled_for(self, db: AsyncSession, user: User) -> bool:
        return len(await self._get_codes(db, user)) > 0

    async def get_template(self, db: AsyncSession, user: User) -> str:
        return _CHALLENGE_TEMPLATE

    async def verify_challenge(self, db: AsyncSession, user: User, challenge: str) -> bool:
        unused = [code for code in await self._get_codes(db, user) if not code.used]
        if not unused:
            raise TwoFactorException(
                "All backup codes have been used. Use another method or ask an administrator for help."
            )

        clean_code = _clean(challenge)
        if not clean_code:
            return False

        for code in unused:
            try:
                _hasher.verify(code.code_hash, clean_code)
            except (VerificationError, InvalidHashError):
                continue

            code.used = True
            code.used_at = utc_now()
            await db.commit()
            return True

        return False
