"""Fixtures for ASGI route tests.

Every service dependency is overridden, so the application runs without a
database, Redis or network.  The rate limiter is reset between tests.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from skybridge.api import dependencies as deps
from skybridge.api.limiter import limiter
from skybridge.api.main import create_app
from skybridge.core.actor_search import ActorSearchRanker
from skybridge.core.batch_follow import BatchFollowOrchestrator
from skybridge.core.follow_status import FollowStatusResolver
from skybridge.core.session_agent import ResolvedAgent
from tests.factories.agents import SELF_DID, make_agent

SESSION_COOKIE = "atlast_session_dev"
USER_AGENT = "pytest-browser/1.0"


@pytest.fixture
def remote_agent() -> MagicMock:
    return make_agent(SELF_DID)


@pytest.fixture
def session_provider() -> MagicMock:
    provider = MagicMock()
    provider.revoke_and_delete = AsyncMock()
    return provider


@pytest.fixture
def user_session_store() -> MagicMock:
    store = MagicMock()
    store.get = AsyncMock(return_value=None)
    return store


@pytest.fixture
def app(
    session_provider: MagicMock,
    user_session_store: MagicMock,
) -> FastAPI:
    application = create_app()
    resolver = FollowStatusResolver()
    application.dependency_overrides.update(
        {
            deps.get_session_agent_provider: lambda: session_provider,
            deps.get_user_session_store: lambda: user_session_store,
            deps.get_follow_status_resolver: lambda: resolver,
            deps.get_actor_search_ranker: lambda: ActorSearchRanker(resolver),
            deps.get_batch_follow_orchestrator: lambda: BatchFollowOrchestrator(
                resolver, sleep=AsyncMock()
            ),
        }
    )
    limiter.reset()
    return application


@pytest.fixture
def authenticated(app: FastAPI, remote_agent: MagicMock) -> FastAPI:
    """Resolve every request to the test agent."""

    async def _resolved_agent() -> ResolvedAgent:
        return ResolvedAgent(agent=remote_agent, did=SELF_DID, client=MagicMock())

    app.dependency_overrides[deps.get_resolved_agent] = _resolved_agent
    return app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"user-agent": USER_AGENT},
        cookies={SESSION_COOKIE: "sess-1"},
    ) as ac:
        yield ac
