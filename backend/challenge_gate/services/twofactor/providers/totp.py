"""TOTP provider (Google Authenticator, Aegis, 1Password, ...)."""

import html
import io
import logging
import time
from base64 import b64encode
from typing import Optional

import pyotp
import qrcode
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from challenge_gate.config import settings
from challenge_gate.crud.twofactor import provider_registry_crud
from challenge_gate.models.twofactor import TotpSecret, TotpState
from challenge_gate.models.user import User
from challenge_gate.services.twofactor.base import LoginSetup, ProviderCapabilities, TwoFactorProvider
from challenge_gate.services.twofactor.exceptions import TwoFactorException

logger = logging.getLogger(__name__)

_CHALLENGE_TEMPLATE = """\
<form method="POST" class="challenge-form" data-provider="totp">
  <label for="challenge">Enter the 6-digit code from your authenticator app</label>
  <input type="text" id="challenge" name="challenge" inputmode="numeric"
         autocomplete="one-time-code" pattern="[0-9 ]*" maxlength="7" required autofocus>
  <button type="submit">Verify</button>
</form>"""

_SETUP_TEMPLATE = """\
<div class="totp-setup">
  <p>Scan this QR code with your authenticator app, then enter the first code it shows.</p>
  <img src="data:image/png;base64,{qr_code}" alt="TOTP QR code">
  <p>Or enter the secret manually: <code>{secret}</code></p>
  <form method="POST" class="totp-activate">
    <input type="text" name="payload" inputmode="numeric" autocomplete="one-time-code"
           maxlength="7" required>
    <button type="submit">Activate</button>
  </form>
</div>"""


def generate_qr_code(uri: str) -> str:
    """
    Generate QR code image as base64 string.

    Args:
        uri: TOTP provisioning URI

    Returns:
        Base64-encoded QR code image (PNG)
    """
    qr = qrcode.QRCode(version=1, box_size=10, border=5)
    qr.add_data(uri)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    buffer.seek(0)

    return b64encode(buffer.getvalue()).decode()


def _normalize_code(code: str) -> str:
    return code.replace(" ", "").strip()


class TotpProvider(TwoFactorProvider):
    """Time-based one-time passwords (RFC 6238).

    Secrets are created during login setup in the ``created`` state and only
    count as enabled after the user confirms a first code. Each accepted
    time step is remembered so a code cannot be replayed.
    """

    provider_id = "totp"
    display_name = "TOTP (Authenticator app)"
    description = "Authenticate with a TOTP app"
    capabilities = ProviderCapabilities(supports_login_setup=True)

    def __init__(self, issuer: Optional[str] = None, valid_window: Optional[int] = None) -> None:
        self.issuer = issuer or settings.TOTP_ISSUER
        self.valid_window = settings.TOTP_VALID_WINDOW if valid_window is None else valid_window

    async def _get_secret(self, db: AsyncSession, user: User) -> Optional[TotpSecret]:
        result = await db.execute(select(TotpSecret).where(TotpSecret.user_id == user.id))
        return result.scalar_one_or_none()

    def _match_counter(self, secret: str, code: str) -> Optional[int]:
        """Return the time step ``code`` belongs to, within the drift window."""
        if len(code) != 6 or not code.isdigit():
            return None

        totp = pyotp.TOTP(secret)
        now = time.time()
        for offset in range(-self.valid_window, self.valid_window + 1):
            for_time = now + offset * totp.interval
            if pyotp.utils.strings_equal(totp.at(for_time), code):
                return int(for_time // totp.interval)
        return None

    async def is_enabled_for(self, db: AsyncSession, user: User) -> bool:
        row = await self._get_secret(db, user)
        return row is not None and row.state == TotpState.ENABLED

    async def get_template(self, db: AsyncSession, user: User) -> str:
        return _CHALLENGE_TEMPLATE

    async def verify_challenge(self, db: AsyncSession, user: User, challenge: str) -> bool:
        row = await self._get_secret(db, user)
        if row is None or row.state != TotpState.ENABLED:
            return False

        counter = self._match_counter(row.secret, _normalize_code(challenge))
        if counter is None:
            return False

        if row.last_counter is not None and counter <= row.last_counter:
            raise TwoFactorException("This code was already used. Wait for the next one and try again.")

        row.last_counter = counter
        await db.commit()
        return True

    async def get_login_setup(self, db: AsyncSession, user: User) -> Optional[LoginSetup]:
        """Create (or rotate) a pending secret and return the enrolment UI."""
        row = await self._get_secret(db, user)
        if row is not None and row.state == TotpState.ENABLED:
            return None

        secret = pyotp.random_base32()
        if row is None:
            row = TotpSecret(user_id=user.id, secret=secret, state=TotpState.CREATED)
            db.add(row)
        else:
            # Every visit to the setup page issues a fresh secret
            row.secret = secret
            row.last_counter = None
        await db.commit()

        uri = pyotp.totp.TOTP(secret).provisioning_uri(
            name=user.email or user.uid,
            issuer_name=self.issuer,
        )
        qr_code = generate_qr_code(uri)

        return LoginSetup(
            body=_SETUP_TEMPLATE.format(qr_code=qr_code, secret=html.escape(secret)),
            data={"secret": secret, "provisioning_uri": uri, "qr_code": qr_code},
        )

    async def activate_at_login(self, db: AsyncSession, user: User, payload: str) -> bool:
        row = await self._get_secret(db, user)
        if row is None or row.state != TotpState.CREATED:
            return False

        counter = self._match_counter(row.secret, _normalize_code(payload))
        if counter is None:
            return False

        row.state = TotpState.ENABLED
        row.last_counter = counter
        await db.commit()
        await provider_registry_crud.enable(db, user.id, self.provider_id)
        logger.info("TOTP activated at login for user %s", user.uid)
        return True
