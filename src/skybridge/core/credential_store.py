"""PostgreSQL-backed stores for OAuth credentials and user sessions.

Two independent sub-stores live here:

- :class:`OAuthSessionStore` maps an identity (DID) to its OAuth credential.
  Only the token set is sealed with :class:`~skybridge.core.token_vault.TokenVault`;
  the DPoP key material stays plaintext so a row can be inspected without
  the key.  Any read that cannot produce a usable credential (tampered blob,
  missing key, malformed row) returns ``None`` so the user is sent back
  through authorisation instead of seeing a 500.
- :class:`UserSessionStore` maps an opaque browser session id to an identity
  for a fixed lifetime.  Expired rows are filtered out at query time; the
  nightly Celery task deletes them.

Both stores take an ``async_sessionmaker`` and open a short transaction per
call.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from skybridge.core.exceptions import DecryptionError
from skybridge.core.models.sessions import OAuthSession, UserSession
from skybridge.core.token_vault import TokenVault

logger = logging.getLogger(__name__)

USER_SESSION_TTL = timedelta(days=7)
USER_SESSION_RETRY_DELAYS: tuple[float, ...] = (0.1, 0.3)


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass
class TokenSet:
    """OAuth token set issued by the account's authorization server."""

    iss: str
    sub: str
    aud: str
    access_token: str
    token_type: str = "DPoP"
    scope: str = ""
    refresh_token: Optional[str] = None
    expires_at: Optional[str] = None

    @property
    def expires_at_dt(self) -> datetime | None:
        if not self.expires_at:
            return None
        return datetime.fromisoformat(self.expires_at.replace("Z", "+00:00"))

    def expires_within(self, seconds: float, now: datetime | None = None) -> bool:
        """``True`` when the access token expires in less than *seconds*."""
        expires = self.expires_at_dt
        if expires is None:
            return False
        now = now or datetime.now(tz=timezone.utc)
        return expires - now < timedelta(seconds=seconds)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "iss": self.iss,
            "sub": self.sub,
            "aud": self.aud,
            "scope": self.scope,
            "access_token": self.access_token,
            "token_type": self.token_type,
        }
        if self.refresh_token is not None:
            data["refresh_token"] = self.refresh_token
        if self.expires_at is not None:
            data["expires_at"] = self.expires_at
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenSet:
        return cls(
            iss=data["iss"],
            sub=data["sub"],
            aud=data["aud"],
            access_token=data["access_token"],
            token_type=data.get("token_type", "DPoP"),
            scope=data.get("scope", ""),
            refresh_token=data.get("refresh_token"),
            expires_at=data.get("expires_at"),
        )


@dataclass
class OAuthCredential:
    """Everything needed to act as *did* against its PDS."""

    did: str
    dpop_jwk: dict[str, Any]
    token_set: TokenSet
    auth_method: str = "private_key_jwt"


@dataclass
class UserSessionData:
    """Value written to the user-session store."""

    did: str
    fingerprint: dict[str, Any] = field(default_factory=dict)


@dataclass
class UserSessionRecord:
    """A live (unexpired) user session."""

    session_id: str
    did: str
    fingerprint: dict[str, Any]
    expires_at: datetime


# ---------------------------------------------------------------------------
# OAuth credential sub-store
# ---------------------------------------------------------------------------


class OAuthSessionStore:
    """Identity → OAuth credential, with the token set encrypted at rest.

    Args:
        session_factory: Async session factory for the application database.
        vault: Token vault, or ``None`` to store token sets in plaintext
            (only permitted outside production; see
            :func:`~skybridge.core.token_vault.get_token_vault`).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        vault: TokenVault | None,
    ) -> None:
        self._session_factory = session_factory
        self._vault = vault

    async def get(self, did: str) -> OAuthCredential | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(OAuthSession.session_data).where(OAuthSession.did == did)
            )
            stored = result.scalar_one_or_none()

        if stored is None:
            return None
        return self._decode(did, stored)

    async def set(self, did: str, credential: OAuthCredential) -> None:
        payload = self._encode(credential)
        stmt = pg_insert(OAuthSession).values(did=did, session_data=payload)
        stmt = stmt.on_conflict_do_update(
            index_elements=[OAuthSession.did],
            set_={"session_data": stmt.excluded.session_data},
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def delete(self, did: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(OAuthSession).where(OAuthSession.did == did))
            await session.commit()

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def _encode(self, credential: OAuthCredential) -> dict[str, Any]:
        token_set = credential.token_set.to_dict()
        if self._vault is None:
            return {
                "dpopJwk": credential.dpop_jwk,
                "authMethod": credential.auth_method,
                "tokenSet": token_set,
            }
        return {
            "encrypted": True,
            "dpopJwk": credential.dpop_jwk,
            "authMethod": credential.auth_method,
            "tokenSet": self._vault.encrypt(token_set),
        }

    def _decode(self, did: str, stored: dict[str, Any]) -> OAuthCredential | None:
        token_set_raw: Any = stored.get("tokenSet")

        if stored.get("encrypted") is True:
            if self._vault is None:
                logger.warning(
                    "credential_store: encrypted session found but no key configured",
                    extra={"did": did},
                )
                return None
            try:
                token_set_raw = self._vault.decrypt(token_set_raw)
            except DecryptionError as exc:
                logger.error(
                    "credential_store: failed to decrypt token set",
                    extra={"did": did, "error": str(exc)},
                )
                return None

        try:
            return OAuthCredential(
                did=did,
                dpop_jwk=stored["dpopJwk"],
                token_set=TokenSet.from_dict(token_set_raw),
                auth_method=stored.get("authMethod", "private_key_jwt"),
            )
        except (KeyError, TypeError) as exc:
            logger.error(
                "credential_store: malformed oauth session row",
                extra={"did": did, "error": repr(exc)},
            )
            return None


# ---------------------------------------------------------------------------
# User session sub-store
# ---------------------------------------------------------------------------


class UserSessionStore:
    """Opaque session id → identity, expiring after a fixed lifetime.

    ``get`` retries a miss with short delays to absorb replication lag
    between the write in the OAuth callback and the first authenticated
    request.

    Args:
        session_factory: Async session factory for the application database.
        ttl: Lifetime applied on every ``set``.
        retry_delays: Sleep before each re-read after a miss, in seconds.
        sleep: Awaitable sleep; injected by tests.
        clock: Current time source; injected by tests.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl: timedelta = USER_SESSION_TTL,
        retry_delays: Sequence[float] = USER_SESSION_RETRY_DELAYS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(tz=timezone.utc),
    ) -> None:
        self._session_factory = session_factory
        self._ttl = ttl
        self._retry_delays = tuple(retry_delays)
        self._sleep = sleep
        self._clock = clock

    async def get(self, session_id: str) -> UserSessionRecord | None:
        record = await self._fetch(session_id)
        for attempt, delay in enumerate(self._retry_delays, start=1):
            if record is not None:
                break
            logger.debug(
                "user_session_store: session not found, retrying",
                extra={"attempt": attempt, "delay": delay},
            )
            await self._sleep(delay)
            record = await self._fetch(session_id)
        return record

    async def set(self, session_id: str, data: UserSessionData) -> None:
        expires_at = self._clock() + self._ttl
        stmt = pg_insert(UserSession).values(
            session_id=session_id,
            did=data.did,
            fingerprint=data.fingerprint,
            expires_at=expires_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserSession.session_id],
            set_={
                "did": stmt.excluded.did,
                "fingerprint": stmt.excluded.fingerprint,
                "expires_at": stmt.excluded.expires_at,
            },
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def delete(self, session_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(UserSession).where(UserSession.session_id == session_id)
            )
            await session.commit()

    async def _fetch(self, session_id: str) -> UserSessionRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserSession).where(
                    UserSession.session_id == session_id,
                    UserSession.expires_at > self._clock(),
                )
            )
            row = result.scalar_one_or_none()
        if row is None:
            return None
        return UserSessionRecord(
            session_id=row.session_id,
            did=row.did,
            fingerprint=dict(row.fingerprint or {}),
            expires_at=row.expires_at,
        )
