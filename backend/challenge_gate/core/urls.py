"""URL generation for redirects and view links."""

from itertools import combinations
from typing import Any, Mapping, Optional, Protocol
from urllib.parse import quote, urlencode, urlsplit

from starlette.routing import NoMatchFound

from challenge_gate.config import settings

LOGOUT_ROUTE = "twofactor.logout"


class RouteTable(Protocol):
    """Anything that reverses route names, e.g. a FastAPI app or router."""

    def url_path_for(self, name: str, /, **path_params: Any) -> Any: ...


class UrlResolver:
    """Builds application URLs from named routes.

    Route reversal is delegated to the framework's ``url_path_for``, so routes
    from included routers resolve with their prefix. Parameters the route
    takes as path parameters are substituted; the rest are appended as a
    query string.
    """

    def __init__(
        self,
        routes: RouteTable,
        base_url: str,
        default_page_path: str = "/",
    ) -> None:
        self._routes = routes
        self.base_url = base_url.rstrip("/")
        self.default_page_path = default_page_path

    @classmethod
    def from_app(
        cls,
        app: RouteTable,
        base_url: Optional[str] = None,
        default_page_path: Optional[str] = None,
    ) -> "UrlResolver":
        return cls(
            app,
            base_url if base_url is not None else settings.BASE_URL,
            default_page_path if default_page_path is not None else settings.DEFAULT_PAGE_PATH,
        )

    def _reverse(self, route_name: str, params: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        # A route matches only with exactly its own path parameters; try the
        # largest candidate set first and leave the others for the query.
        names = list(params)
        for size in range(len(names), -1, -1):
            for chosen in combinations(names, size):
                path_params = {name: quote(str(params[name]), safe="") for name in chosen}
                try:
                    path = self._routes.url_path_for(route_name, **path_params)
                except NoMatchFound:
                    continue
                rest = {name: value for name, value in params.items() if name not in chosen}
                return str(path), rest
        raise NoMatchFound(route_name, params)

    def link_to_route(self, route_name: str, params: Optional[Mapping[str, Any]] = None) -> str:
        """
        Return the site-relative URL of a named route.

        Raises:
            NoMatchFound: If the route is unknown or a path parameter is missing
        """
        present = {key: value for key, value in (params or {}).items() if value is not None}
        path, query = self._reverse(route_name, present)
        if query:
            path = f"{path}?{urlencode(query)}"
        return path

    def get_absolute_url(self, url: str) -> str:
        """Return ``url`` unchanged if absolute, otherwise join it to the base URL."""
        parts = urlsplit(url)
        if parts.scheme and parts.netloc:
            return url
        if url.startswith("//"):
            return f"{urlsplit(self.base_url).scheme}:{url}"
        separator = "" if url.startswith("/") else "/"
        return f"{self.base_url}{separator}{url}"

    def link_to_default_page_url(self) -> str:
        """Landing page after a completed login."""
        return self.get_absolute_url(self.default_page_path)

    def logout_url(self) -> str:
        """Link that abandons the login attempt."""
        return self.get_absolute_url(self.link_to_route(LOGOUT_ROUTE))

    def is_application_url(self, url: str) -> bool:
        """True if ``url`` points at this application's scheme and host."""
        target = urlsplit(self.get_absolute_url(url))
        base = urlsplit(self.base_url)
        return (target.scheme, target.netloc) == (base.scheme, base.netloc)
