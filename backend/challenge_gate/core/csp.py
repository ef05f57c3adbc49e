"""Content-Security-Policy builder shared by the headers middleware and providers."""

from dataclasses import dataclass, field

# Strict policy for the login pages: nothing third-party, no inline code
DEFAULT_DIRECTIVES: dict[str, list[str]] = {
    "default-src": ["'none'"],
    "script-src": ["'self'"],
    "style-src": ["'self'"],
    "img-src": ["'self'", "data:"],
    "connect-src": ["'self'"],
    "frame-ancestors": ["'none'"],
    "base-uri": ["'self'"],
    "form-action": ["'self'"],
}


@dataclass
class ContentSecurityPolicy:
    """Mutable CSP starting from the strict default.

    Providers that need extra sources (an external verification backend,
    a WebAuthn helper script) widen individual directives::

        ContentSecurityPolicy().allow("connect-src", "https://api.duosecurity.com")
    """

    directives: dict[str, list[str]] = field(
        default_factory=lambda: {name: list(sources) for name, sources in DEFAULT_DIRECTIVES.items()}
    )

    def allow(self, directive: str, *sources: str) -> "ContentSecurityPolicy":
        """Add sources to a directive. Adding to a ``'none'`` directive replaces it."""
        current = self.directives.setdefault(directive, [])
        if current == ["'none'"]:
            current.clear()
        for source in sources:
            if source not in current:
                current.append(source)
        return self

    def build(self) -> str:
        """Render the header value."""
        return "; ".join(
            f"{name} {' '.join(sources)}" for name, sources in self.directives.items() if sources
        )
