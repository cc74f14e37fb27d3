"""Shared slowapi rate-limiter singleton.

Kept in its own module so route modules can import it without importing
``main.py`` (which imports every route module).

Usage in route modules::

    from skybridge.api.limiter import limiter, search_limit

    @router.post("/batch-search-actors")
    @limiter.limit(search_limit)
    async def batch_search_actors(request: Request, ...):
        ...

The ``request`` parameter **must** be present in the route function
signature for slowapi to resolve the rate-limit key.
"""

from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from skybridge.config.settings import get_settings


def session_or_address(request: Request) -> str:
    """Rate-limit key: the session cookie when present, else the client address.

    Keying on the session keeps users behind a shared NAT from exhausting
    each other's quota.
    """
    settings = get_settings()
    for cookie_name in (settings.session_cookie_name, settings.dev_session_cookie_name):
        session_id = request.cookies.get(cookie_name)
        if session_id:
            return f"session:{session_id}"
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return get_remote_address(request)


def search_limit() -> str:
    return get_settings().search_rate_limit


def follow_limit() -> str:
    return get_settings().follow_rate_limit


limiter: Limiter = Limiter(key_func=session_or_address)
"""Global rate-limiter instance.

Per-route limits come from settings (``SEARCH_RATE_LIMIT``,
``FOLLOW_RATE_LIMIT``) and are read when a request is checked.
"""
