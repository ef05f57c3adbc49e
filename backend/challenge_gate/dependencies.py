"""FastAPI dependencies for the login flow."""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from challenge_gate.config import settings
from challenge_gate.core.database import get_db
from challenge_gate.core.security import LOGIN_TOKEN_TYPE, decode_token
from challenge_gate.core.session import LoginSession, get_session_store
from challenge_gate.core.urls import UrlResolver
from challenge_gate.crud.user import user_crud
from challenge_gate.models.user import User
from challenge_gate.services.challenge.orchestrator import ChallengeOrchestrator
from challenge_gate.services.challenge.redirect import RedirectResolver
from challenge_gate.services.twofactor.manager import ChallengeManager, get_providers
from challenge_gate.utils.request_utils import get_client_ip

# Browsers send the login cookie; API clients may send the same token as a bearer
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class LoginContext:
    """A login that passed the password step and still owes a second factor."""

    user: User
    session_id: str
    remote_address: Optional[str] = None


def _credentials_exception(detail: str = "Could not validate login") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_login_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[str]:
    """Login token from the cookie, falling back to the Authorization header."""
    token = request.cookies.get(settings.LOGIN_COOKIE_NAME)
    if token:
        return token
    return credentials.credentials if credentials else None


async def get_login_context(
    request: Request,
    token: Optional[str] = Depends(get_login_token),
    db: AsyncSession = Depends(get_db),
) -> LoginContext:
    """
    Resolve the pending login from its token.

    Raises:
        HTTPException: 401 if the token is missing, invalid or not a login
            token, or the user no longer exists; 403 if the user is inactive
    """
    if not token:
        raise _credentials_exception("Not logged in")

    try:
        payload = decode_token(token)
    except JWTError:
        raise _credentials_exception()

    if payload.get("type") != LOGIN_TOKEN_TYPE:
        raise _credentials_exception("Invalid token type")

    user_id = payload.get("sub")
    session_id = payload.get("sid")
    if not user_id or not session_id:
        raise _credentials_exception()

    try:
        user_uuid = UUID(user_id)
    except ValueError:
        raise _credentials_exception()

    user = await user_crud.get_by_id(db, user_uuid)
    if user is None:
        raise _credentials_exception()

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    login = LoginContext(user=user, session_id=session_id, remote_address=get_client_ip(request))
    request.state.login = login
    return login


def get_login_session(login: LoginContext = Depends(get_login_context)) -> LoginSession:
    return get_session_store().scoped(login.session_id)


def get_challenge_manager(
    db: AsyncSession = Depends(get_db),
    session: LoginSession = Depends(get_login_session),
) -> ChallengeManager:
    return ChallengeManager(db, get_providers(), session)


def get_url_resolver(request: Request) -> UrlResolver:
    return UrlResolver.from_app(request.app)


def get_challenge_orchestrator(
    manager: ChallengeManager = Depends(get_challenge_manager),
    urls: UrlResolver = Depends(get_url_resolver),
) -> ChallengeOrchestrator:
    redirects = RedirectResolver(urls, restrict_to_app=settings.RESTRICT_REDIRECTS_TO_APP)
    return ChallengeOrchestrator(manager, urls, redirects)
