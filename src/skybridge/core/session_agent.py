"""Resolve a browser session id into a live, authenticated protocol agent.

:class:`SessionAgentProvider` ties the user-session store, the OAuth client
factory and the client cache together:

1. the session id is looked up (missing or expired → ``AuthenticationError``);
2. an OAuth client for ``(session id, host)`` is reused from the cache or
   built and cached for ``client_cache_ttl_seconds``;
3. the client restores the stored credential (refreshing it if needed).
   A failed restore evicts the cached client so the next request starts
   from a clean construction.

Logout (:meth:`SessionAgentProvider.revoke_and_delete`) is idempotent and
never fails because of the remote revocation call.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from skybridge.atproto.agent import AgentProtocol
from skybridge.atproto.oauth_client import HostContext
from skybridge.core.cache import TTLCache
from skybridge.core.credential_store import UserSessionStore
from skybridge.core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_TTL_SECONDS = 300


class SessionClient(Protocol):
    """The subset of :class:`~skybridge.atproto.oauth_client.OAuthClient` used here."""

    async def restore(self, did: str) -> AgentProtocol:
        ...

    async def revoke(self, did: str) -> None:
        ...


@dataclass
class ResolvedAgent:
    """An authenticated agent together with the identity it acts as."""

    agent: AgentProtocol
    did: str
    client: SessionClient


def client_cache_key(session_id: str, host: HostContext) -> str:
    return f"oauth-client-{session_id}-{host.cache_label}"


class SessionAgentProvider:
    """Session id → authenticated agent, with a TTL-bounded client cache.

    Args:
        user_sessions: Store mapping session ids to identities.
        client_factory: Builds an OAuth client for a host.  Construction may
            raise :class:`~skybridge.core.exceptions.ConfigurationError`,
            which is propagated unchanged.
        cache: Client cache shared across requests.
        cache_ttl_seconds: Lifetime of a cached client.
    """

    def __init__(
        self,
        user_sessions: UserSessionStore,
        client_factory: Callable[[HostContext], SessionClient],
        cache: TTLCache,
        cache_ttl_seconds: float = DEFAULT_CLIENT_TTL_SECONDS,
    ) -> None:
        self._user_sessions = user_sessions
        self._client_factory = client_factory
        self._cache = cache
        self._cache_ttl_seconds = cache_ttl_seconds

    async def get_did(self, session_id: str) -> str | None:
        """Return the identity behind *session_id*, or ``None``."""
        record = await self._user_sessions.get(session_id)
        return record.did if record is not None else None

    async def resolve(self, session_id: str, host: HostContext) -> ResolvedAgent:
        """Return an authenticated agent for *session_id*.

        Raises:
            AuthenticationError: If the session is unknown or expired, or the
                stored credential cannot be restored.
        """
        record = await self._user_sessions.get(session_id)
        if record is None:
            raise AuthenticationError("Invalid or expired session")
        did = record.did

        key = client_cache_key(session_id, host)
        client = self._cache.get(key)
        if client is None:
            client = self._client_factory(host)
            self._cache.set(key, client, self._cache_ttl_seconds)
            logger.debug("session_agent: built and cached oauth client", extra={"did": did})

        try:
            agent = await client.restore(did)
        except Exception as exc:
            self._cache.evict(key)
            logger.warning(
                "session_agent: failed to restore session",
                extra={"did": did, "error": str(exc)},
            )
            raise AuthenticationError("Failed to restore session") from exc

        return ResolvedAgent(agent=agent, did=did, client=client)

    async def revoke_and_delete(self, session_id: str, host: HostContext) -> None:
        """Log out *session_id*: revoke remotely (best effort) and forget it locally.

        A session id that is unknown or already expired is a no-op.
        """
        record = await self._user_sessions.get(session_id)
        if record is None:
            logger.info("session_agent: logout for unknown session")
            return

        try:
            client = self._client_factory(host)
            await client.revoke(record.did)
        except Exception as exc:
            logger.warning(
                "session_agent: could not revoke oauth session",
                extra={"did": record.did, "error": str(exc)},
            )

        await self._user_sessions.delete(session_id)
        self._cache.evict(client_cache_key(session_id, host))
        logger.info("session_agent: session deleted", extra={"did": record.did})
