"""Second-factor challenge control flow.

Selection -> challenge display -> verification, plus the first-time setup
path (setup selection -> setup page -> confirmation -> challenge display).
Every operation ends in a view model or a ``Redirect``; nothing here is
fatal to the request.
"""

import html
import logging
import re
from typing import Optional, Union

from challenge_gate.core.session import LoginSession
from challenge_gate.core.urls import UrlResolver
from challenge_gate.models.user import User
from challenge_gate.services.challenge.error_store import SessionErrorStore
from challenge_gate.services.challenge.redirect import RedirectResolver
from challenge_gate.services.challenge.views import (
    ChallengeView,
    ProviderInfo,
    Redirect,
    SelectionView,
    SetupSelectionView,
    SetupView,
)
from challenge_gate.services.twofactor.base import BACKUP_CODES_PROVIDER_ID, TwoFactorProvider
from challenge_gate.services.twofactor.exceptions import TwoFactorException
from challenge_gate.services.twofactor.manager import ChallengeManager

ROUTE_SELECT_CHALLENGE = "twofactor.select_challenge"
ROUTE_SHOW_CHALLENGE = "twofactor.show_challenge"
ROUTE_ACTIVATE_PROVIDER = "twofactor.activate_provider"

_FORM_WITHOUT_ACTION = re.compile(r"<form\b(?![^>]*\baction=)", re.IGNORECASE)


def split_providers_and_backup_codes(
    providers: list[TwoFactorProvider],
) -> tuple[list[TwoFactorProvider], Optional[TwoFactorProvider]]:
    """Separate the backup-codes provider from the regular ones, keeping order."""
    regular = []
    backup = None
    for provider in providers:
        if provider.provider_id == BACKUP_CODES_PROVIDER_ID:
            backup = provider
        else:
            regular.append(provider)
    return regular, backup


def bind_redirect_url(markup: str, redirect_url: Optional[str]) -> str:
    """Carry ``redirect_url`` through the provider's challenge form."""
    if redirect_url is None or "</form>" not in markup:
        return markup
    hidden = f'<input type="hidden" name="redirect_url" value="{html.escape(redirect_url, quote=True)}">\n'
    return markup.replace("</form>", f"{hidden}</form>", 1)


def bind_form_action(markup: str, action: str) -> str:
    """Point the first form without an ``action`` at ``action``."""
    return _FORM_WITHOUT_ACTION.sub(
        lambda _: f'<form action="{html.escape(action, quote=True)}"', markup, count=1
    )


class ChallengeOrchestrator:
    """Drives the second-factor pages for a user who passed the password step."""

    def __init__(
        self,
        manager: ChallengeManager,
        urls: UrlResolver,
        redirects: Optional[RedirectResolver] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.manager = manager
        self.urls = urls
        self.redirects = redirects or RedirectResolver(urls)
        self.logger = logger or logging.getLogger(__name__)

    def _redirect_to_route(self, route: str, params: Optional[dict] = None) -> Redirect:
        params = dict(params or {})
        return Redirect(url=self.urls.link_to_route(route, params), route=route, params=params)

    def _redirect_to_selection(self) -> Redirect:
        return self._redirect_to_route(ROUTE_SELECT_CHALLENGE)

    async def select_challenge(self, user: User, redirect_url: Optional[str]) -> SelectionView:
        provider_set = await self.manager.get_provider_set(user)
        providers, backup_provider = split_providers_and_backup_codes(provider_set.get_providers())
        setup_providers = await self.manager.get_login_setup_providers(user)

        return SelectionView(
            providers=[ProviderInfo.from_provider(p) for p in providers],
            backup_provider=ProviderInfo.from_provider(backup_provider) if backup_provider else None,
            provider_missing=provider_set.provider_missing,
            redirect_url=redirect_url,
            logout_url=self.urls.logout_url(),
            has_setup_providers=bool(setup_providers),
        )

    async def show_challenge(
        self,
        user: User,
        provider_id: str,
        redirect_url: Optional[str],
        session: LoginSession,
    ) -> Union[ChallengeView, Redirect]:
        provider_set = await self.manager.get_provider_set(user)
        provider = provider_set.get_provider(provider_id)
        if provider is None:
            return self._redirect_to_selection()

        backup_provider = provider_set.get_provider(BACKUP_CODES_PROVIDER_ID)
        if backup_provider is not None and backup_provider.provider_id == provider.provider_id:
            # No "use a backup code" link on the backup code page itself
            backup_provider = None

        error = await SessionErrorStore(session).pop()

        template = await self.manager.get_challenge_template(provider, user)

        csp = None
        if provider.capabilities.supports_custom_csp:
            policy = provider.get_csp()
            csp = policy.build() if policy is not None else None

        return ChallengeView(
            error=error.had_error,
            error_message=error.message,
            provider=ProviderInfo.from_provider(provider),
            backup_provider=ProviderInfo.from_provider(backup_provider) if backup_provider else None,
            logout_url=self.urls.logout_url(),
            redirect_url=redirect_url,
            template=bind_redirect_url(template, redirect_url),
            content_security_policy=csp,
        )

    async def solve_challenge(
        self,
        user: User,
        provider_id: str,
        challenge: str,
        redirect_url: Optional[str],
        session: LoginSession,
        remote_address: Optional[str] = None,
    ) -> Redirect:
        provider = await self.manager.get_provider(user, provider_id)
        if provider is None:
            return self._redirect_to_selection()

        errors = SessionErrorStore(session)
        try:
            if await self.manager.verify_challenge(provider_id, user, challenge):
                return Redirect(url=self.redirects.resolve(redirect_url))
        except TwoFactorException as e:
            # Shown once on the next challenge page
            await errors.store_message(e.message)

        self.logger.warning(
            "Two-factor challenge failed: %s (Remote IP: %s)", user.uid, remote_address
        )
        await errors.flag_failure()
        return self._redirect_to_route(
            ROUTE_SHOW_CHALLENGE,
            {"challenge_provider_id": provider.provider_id, "redirect_url": redirect_url},
        )

    async def setup_providers(self, user: User, redirect_url: Optional[str]) -> SetupSelectionView:
        setup_providers = await self.manager.get_login_setup_providers(user)
        return SetupSelectionView(
            providers=[ProviderInfo.from_provider(p) for p in setup_providers],
            logout_url=self.urls.logout_url(),
            redirect_url=redirect_url,
        )

    async def setup_provider(
        self, user: User, provider_id: str, redirect_url: Optional[str]
    ) -> Union[SetupView, Redirect]:
        provider = None
        for candidate in await self.manager.get_login_setup_providers(user):
            if candidate.provider_id == provider_id:
                provider = candidate
                break

        if provider is None:
            return self._redirect_to_selection()

        setup = await self.manager.get_login_setup(provider, user)
        if setup is None:
            return self._redirect_to_selection()

        activate_url = self.urls.link_to_route(
            ROUTE_ACTIVATE_PROVIDER, {"provider_id": provider.provider_id}
        )
        return SetupView(
            provider=ProviderInfo.from_provider(provider),
            logout_url=self.urls.logout_url(),
            redirect_url=redirect_url,
            template=bind_form_action(setup.body, activate_url),
            setup=setup.data,
            activate_url=activate_url,
        )

    def confirm_provider_setup(self, provider_id: str, redirect_url: Optional[str]) -> Redirect:
        """Continue to the challenge for the provider just set up.

        ``provider_id`` is not checked here; ``show_challenge`` sends unknown
        ids back to the selection page.
        """
        return self._redirect_to_route(
            ROUTE_SHOW_CHALLENGE,
            {"challenge_provider_id": provider_id, "redirect_url": redirect_url},
        )
