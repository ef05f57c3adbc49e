"""Request helpers."""

from typing import Optional

from starlette.requests import Request


def get_client_ip(request: Request) -> Optional[str]:
    """
    Return the client address.

    Uses the rightmost X-Forwarded-For entry: that one is appended by the
    last proxy we control, the leftmost entries are client-supplied.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ips = [ip.strip() for ip in forwarded.split(",") if ip.strip()]
        if ips:
            return ips[-1]
    return request.client.host if request.client else None
