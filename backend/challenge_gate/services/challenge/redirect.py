"""Post-login destination."""

import logging
from typing import Optional
from urllib.parse import unquote_plus

from challenge_gate.core.urls import UrlResolver

logger = logging.getLogger(__name__)


class RedirectResolver:
    """Turns the caller's ``redirect_url`` into the URL to send the user to.

    ``redirect_url`` arrives URL-encoded (it travels as a query parameter
    through every challenge page) and is decoded exactly once here.
    """

    def __init__(self, urls: UrlResolver, restrict_to_app: bool = False) -> None:
        self.urls = urls
        self.restrict_to_app = restrict_to_app

    def resolve(self, redirect_url: Optional[str]) -> str:
        if not redirect_url:
            return self.urls.link_to_default_page_url()

        target = self.urls.get_absolute_url(unquote_plus(redirect_url))
        if self.restrict_to_app and not self.urls.is_application_url(target):
            logger.warning("Ignoring off-site redirect target after login: %s", target)
            return self.urls.link_to_default_page_url()
        return target
