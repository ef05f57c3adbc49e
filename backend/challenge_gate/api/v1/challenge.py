"""Two-factor challenge endpoints (second step of login)."""

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from jose import JWTError
from pydantic import ValidationError

from challenge_gate.config import settings
from challenge_gate.core.security import LOGIN_TOKEN_TYPE, decode_token
from challenge_gate.core.session import LoginSession, get_session_store
from challenge_gate.core.urls import UrlResolver
from challenge_gate.dependencies import (
    LoginContext,
    get_challenge_manager,
    get_challenge_orchestrator,
    get_login_context,
    get_login_session,
    get_login_token,
    get_url_resolver,
)
from challenge_gate.schemas.challenge import ActivateProviderRequest, ActivateProviderResponse
from challenge_gate.services.challenge.orchestrator import ChallengeOrchestrator
from challenge_gate.services.challenge.views import (
    ChallengeView,
    Redirect,
    SelectionView,
    SetupSelectionView,
    SetupView,
)
from challenge_gate.services.rate_limit_service import get_rate_limit_service
from challenge_gate.services.twofactor.manager import ChallengeManager

logger = logging.getLogger(__name__)

router = APIRouter()

rate_limit_service = get_rate_limit_service()


def _redirect(target: Redirect) -> RedirectResponse:
    return RedirectResponse(url=target.url, status_code=status.HTTP_303_SEE_OTHER)


async def _activation_request(request: Request) -> ActivateProviderRequest:
    """Read the activation payload from a JSON body or a submitted setup form."""
    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            raise RequestValidationError([{"type": "json_invalid", "loc": ("body",), "msg": "Invalid JSON body"}])
    else:
        data = dict(await request.form())
    try:
        return ActivateProviderRequest.model_validate(data)
    except ValidationError as e:
        raise RequestValidationError(e.errors())


def _render(view: Union[ChallengeView, SetupView, Redirect]):
    if isinstance(view, Redirect):
        return _redirect(view)

    response = JSONResponse(content=view.model_dump(mode="json"))
    csp = getattr(view, "content_security_policy", None)
    if csp:
        response.headers["Content-Security-Policy"] = csp
    return response


@router.get("/selectchallenge", name="twofactor.select_challenge", response_model=SelectionView)
async def select_challenge(
    redirect_url: Optional[str] = Query(None),
    login: LoginContext = Depends(get_login_context),
    orchestrator: ChallengeOrchestrator = Depends(get_challenge_orchestrator),
):
    """List the second factors the user can pick from."""
    return await orchestrator.select_challenge(login.user, redirect_url or None)


@router.get(
    "/challenge/{challenge_provider_id}",
    name="twofactor.show_challenge",
    response_model=None,
)
async def show_challenge(
    challenge_provider_id: str,
    redirect_url: Optional[str] = Query(None),
    login: LoginContext = Depends(get_login_context),
    session: LoginSession = Depends(get_login_session),
    orchestrator: ChallengeOrchestrator = Depends(get_challenge_orchestrator),
):
    """
    Show one provider's challenge.

    A failure from the previous attempt is shown once. Providers with their
    own Content-Security-Policy get it as the response header.
    """
    view = await orchestrator.show_challenge(
        login.user, challenge_provider_id, redirect_url or None, session
    )
    return _render(view)


@router.post(
    "/challenge/{challenge_provider_id}",
    name="twofactor.solve_challenge",
    response_model=None,
)
async def solve_challenge(
    request: Request,
    challenge_provider_id: str,
    challenge: str = Form(...),
    redirect_url: Optional[str] = Form(None),
    redirect_url_query: Optional[str] = Query(None, alias="redirect_url"),
    login: LoginContext = Depends(get_login_context),
    session: LoginSession = Depends(get_login_session),
    orchestrator: ChallengeOrchestrator = Depends(get_challenge_orchestrator),
):
    """
    Verify a challenge response.

    Rate limited per user to CHALLENGE_RATE_LIMIT_MAX attempts per
    CHALLENGE_RATE_LIMIT_WINDOW_SECONDS.
    """
    await rate_limit_service.check_rate_limit(
        request=request,
        max_requests=settings.CHALLENGE_RATE_LIMIT_MAX,
        window_seconds=settings.CHALLENGE_RATE_LIMIT_WINDOW_SECONDS,
        identifier=f"user:{login.user.id}",
        scope="twofactor.solve_challenge",
    )

    target = await orchestrator.solve_challenge(
        login.user,
        challenge_provider_id,
        challenge,
        redirect_url or redirect_url_query or None,
        session,
        remote_address=login.remote_address,
    )
    return _redirect(target)


@router.get("/setupchallenge", name="twofactor.setup_providers", response_model=SetupSelectionView)
async def setup_providers(
    redirect_url: Optional[str] = Query(None),
    login: LoginContext = Depends(get_login_context),
    orchestrator: ChallengeOrchestrator = Depends(get_challenge_orchestrator),
):
    """List the providers the user can set up now."""
    return await orchestrator.setup_providers(login.user, redirect_url or None)


@router.get("/setupchallenge/{provider_id}", name="twofactor.setup_provider", response_model=None)
async def setup_provider(
    provider_id: str,
    redirect_url: Optional[str] = Query(None),
    login: LoginContext = Depends(get_login_context),
    orchestrator: ChallengeOrchestrator = Depends(get_challenge_orchestrator),
):
    view = await orchestrator.setup_provider(login.user, provider_id, redirect_url or None)
    return _render(view)


@router.post(
    "/setupchallenge/{provider_id}",
    name="twofactor.confirm_provider_setup",
    response_model=None,
)
async def confirm_provider_setup(
    provider_id: str,
    redirect_url: Optional[str] = Form(None),
    redirect_url_query: Optional[str] = Query(None, alias="redirect_url"),
    login: LoginContext = Depends(get_login_context),
    orchestrator: ChallengeOrchestrator = Depends(get_challenge_orchestrator),
):
    """Continue from a finished setup to that provider's challenge."""
    return _redirect(
        orchestrator.confirm_provider_setup(provider_id, redirect_url or redirect_url_query or None)
    )


@router.post(
    "/setupchallenge/{provider_id}/activate",
    name="twofactor.activate_provider",
    response_model=ActivateProviderResponse,
)
async def activate_provider(
    request: Request,
    provider_id: str,
    data: ActivateProviderRequest = Depends(_activation_request),
    login: LoginContext = Depends(get_login_context),
    manager: ChallengeManager = Depends(get_challenge_manager),
):
    """
    Finish a provider's setup with its proof of possession.

    Counts against the same per-user limit as challenge submissions.
    """
    await rate_limit_service.check_rate_limit(
        request=request,
        max_requests=settings.CHALLENGE_RATE_LIMIT_MAX,
        window_seconds=settings.CHALLENGE_RATE_LIMIT_WINDOW_SECONDS,
        identifier=f"user:{login.user.id}",
        scope="twofactor.solve_challenge",
    )

    activated = await manager.activate_provider(login.user, provider_id, data.payload)
    if not activated:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Could not activate provider",
        )
    return ActivateProviderResponse(provider_id=provider_id, activated=True)


@router.get("/logout", name="twofactor.logout", response_model=None)
async def logout(
    token: Optional[str] = Depends(get_login_token),
    urls: UrlResolver = Depends(get_url_resolver),
):
    """Abandon the login attempt and return to the login page."""
    if token:
        try:
            payload = decode_token(token)
        except JWTError:
            payload = {}
        session_id = payload.get("sid")
        if payload.get("type") == LOGIN_TOKEN_TYPE and session_id:
            await get_session_store().clear(session_id)

    response = RedirectResponse(
        url=urls.get_absolute_url(settings.LOGOUT_REDIRECT_PATH),
        status_code=status.HTTP_303_SEE_OTHER,
    )
    response.delete_cookie(settings.LOGIN_COOKIE_NAME)
    return response
