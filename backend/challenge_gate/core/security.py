"""Login token utilities.

The password step of login hands the browser a short-lived ``login_pending``
token. It names the user and the login session whose scratch state
(error flags, pending uid) lives in the session store.
"""

import secrets
from datetime import timedelta
from typing import Any, Optional

from jose import jwt

from challenge_gate.config import settings
from challenge_gate.utils.datetime_utils import utc_now

LOGIN_TOKEN_TYPE = "login_pending"


def create_login_token(
    user_id: str,
    session_id: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> tuple[str, str]:
    """
    Create a JWT for a login that still needs its second factor.

    Args:
        user_id: User ID to encode in token
        session_id: Login session id (a new one is generated when omitted)
        expires_delta: Optional custom expiration time

    Returns:
        Tuple of (token, session_id)
    """
    sid = session_id or generate_random_token()
    expire = utc_now() + (
        expires_delta or timedelta(minutes=settings.LOGIN_TOKEN_EXPIRE_MINUTES)
    )

    data = {
        "sub": user_id,
        "sid": sid,
        "exp": expire,
        "type": LOGIN_TOKEN_TYPE,
    }
    token = jwt.encode(data, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    return token, sid


def decode_token(token: str) -> dict[str, Any]:
    """
    Decode and verify a JWT token.

    Raises:
        JWTError: If token is invalid or expired
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


def generate_random_token(length: int = 32) -> str:
    """Generate a random URL-safe token."""
    return secrets.token_urlsafe(length)
