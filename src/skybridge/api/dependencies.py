"""FastAPI dependency injection providers.

Dependency hierarchy::

    get_session_id           : session cookie, else AuthenticationError (401)
    get_host_context         : Host / X-Forwarded-* headers
    get_session_agent_provider
        └── get_resolved_agent: authenticated agent for the request

Service singletons are built once per process and can be replaced in
tests with ``app.dependency_overrides``.
"""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache, partial
from typing import Annotated

import httpx
from fastapi import Depends, Request

from skybridge.atproto.config import HTTP_TIMEOUT_SECONDS
from skybridge.atproto.oauth_client import HostContext, OAuthClient, build_oauth_client
from skybridge.config.settings import get_settings
from skybridge.core.actor_search import ActorSearchRanker
from skybridge.core.batch_follow import BatchFollowOrchestrator
from skybridge.core.cache import get_client_cache
from skybridge.core.credential_store import OAuthSessionStore, UserSessionStore
from skybridge.core.database import get_session_factory
from skybridge.core.exceptions import AuthenticationError
from skybridge.core.follow_status import FollowStatusResolver
from skybridge.core.match_repository import MatchRepository
from skybridge.core.session_agent import ResolvedAgent, SessionAgentProvider
from skybridge.core.token_vault import get_token_vault

# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------


def find_session_id(request: Request) -> str | None:
    """Return the session id from either session cookie, or ``None``."""
    settings = get_settings()
    return (
        request.cookies.get(settings.session_cookie_name)
        or request.cookies.get(settings.dev_session_cookie_name)
        or None
    )


def get_session_id(request: Request) -> str:
    session_id = find_session_id(request)
    if not session_id:
        raise AuthenticationError("No session cookie")
    return session_id


def get_host_context(request: Request) -> HostContext:
    return HostContext(
        host=request.headers.get("host"),
        forwarded_host=request.headers.get("x-forwarded-host"),
        forwarded_proto=request.headers.get("x-forwarded-proto") or "https",
    )


# ---------------------------------------------------------------------------
# Shared clients and services
# ---------------------------------------------------------------------------

_http_client: httpx.AsyncClient | None = None


def get_http_client() -> httpx.AsyncClient:
    """Return the process-wide outbound HTTP client."""
    global _http_client
    if _http_client is None or _http_client.is_closed:
        settings = get_settings()
        _http_client = httpx.AsyncClient(
            timeout=HTTP_TIMEOUT_SECONDS,
            headers={"User-Agent": f"{settings.app_name}/0.1"},
        )
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


@lru_cache
def get_user_session_store() -> UserSessionStore:
    settings = get_settings()
    return UserSessionStore(
        get_session_factory(),
        ttl=timedelta(days=settings.user_session_ttl_days),
    )


@lru_cache
def get_oauth_session_store() -> OAuthSessionStore:
    return OAuthSessionStore(get_session_factory(), get_token_vault())


@lru_cache
def get_session_agent_provider() -> SessionAgentProvider:
    settings = get_settings()
    client_factory = partial(
        _build_client,
        session_store=get_oauth_session_store(),
    )
    return SessionAgentProvider(
        user_sessions=get_user_session_store(),
        client_factory=client_factory,
        cache=get_client_cache(),
        cache_ttl_seconds=settings.client_cache_ttl_seconds,
    )


def _build_client(host: HostContext, session_store: OAuthSessionStore) -> OAuthClient:
    return build_oauth_client(host, get_settings(), session_store, get_http_client())


@lru_cache
def get_follow_status_resolver() -> FollowStatusResolver:
    return FollowStatusResolver()


@lru_cache
def get_actor_search_ranker() -> ActorSearchRanker:
    return ActorSearchRanker(get_follow_status_resolver())


@lru_cache
def get_batch_follow_orchestrator() -> BatchFollowOrchestrator:
    return BatchFollowOrchestrator(
        get_follow_status_resolver(),
        sink=MatchRepository(get_session_factory()),
    )


# ---------------------------------------------------------------------------
# Authenticated agent
# ---------------------------------------------------------------------------


async def get_resolved_agent(
    session_id: Annotated[str, Depends(get_session_id)],
    host: Annotated[HostContext, Depends(get_host_context)],
    provider: Annotated[SessionAgentProvider, Depends(get_session_agent_provider)],
) -> ResolvedAgent:
    """Resolve the request's session into an authenticated agent.

    Raises:
        AuthenticationError: Rendered as 401 by the application error handler.
    """
    return await provider.resolve(session_id, host)
