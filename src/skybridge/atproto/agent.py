"""Authenticated protocol agent for one restored session.

The core services depend only on :class:`AgentProtocol`; :class:`Agent` is
the XRPC-backed implementation returned by
:meth:`skybridge.atproto.oauth_client.OAuthClient.restore`.  Tests supply
lightweight fakes with the same four coroutines.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from skybridge.atproto.config import (
    APPVIEW_PROXY,
    CREATE_RECORD_NSID,
    GET_PROFILES_BATCH_SIZE,
    GET_PROFILES_NSID,
    LIST_RECORDS_NSID,
    LIST_RECORDS_PAGE_SIZE,
    SEARCH_ACTORS_LIMIT,
    SEARCH_ACTORS_NSID,
)
from skybridge.atproto.xrpc import XrpcClient


@dataclass
class RecordPage:
    """One page of ``com.atproto.repo.listRecords`` output."""

    records: list[dict[str, Any]] = field(default_factory=list)
    cursor: str | None = None


def _objects(value: Any) -> list[dict[str, Any]]:
    """Keep the JSON objects of a response array; anything else is dropped."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


class AgentProtocol(Protocol):
    """Remote directory and repository operations used by the core."""

    did: str

    async def search_actors(self, query: str, limit: int = SEARCH_ACTORS_LIMIT) -> list[dict[str, Any]]:
        ...

    async def get_profiles(self, actors: Sequence[str]) -> list[dict[str, Any]]:
        ...

    async def list_records(
        self,
        collection: str,
        limit: int = LIST_RECORDS_PAGE_SIZE,
        cursor: str | None = None,
    ) -> RecordPage:
        ...

    async def create_record(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        ...


class Agent:
    """XRPC-backed :class:`AgentProtocol` acting as *did*.

    All methods raise :class:`~skybridge.core.exceptions.UpstreamError` on
    failure.
    """

    def __init__(self, did: str, xrpc: XrpcClient) -> None:
        self.did = did
        self._xrpc = xrpc

    async def search_actors(self, query: str, limit: int = SEARCH_ACTORS_LIMIT) -> list[dict[str, Any]]:
        data = await self._xrpc.query(
            SEARCH_ACTORS_NSID,
            params={"q": query, "limit": limit},
            headers={"atproto-proxy": APPVIEW_PROXY},
        )
        return _objects(data.get("actors"))

    async def get_profiles(self, actors: Sequence[str]) -> list[dict[str, Any]]:
        if len(actors) > GET_PROFILES_BATCH_SIZE:
            raise ValueError(
                f"get_profiles accepts at most {GET_PROFILES_BATCH_SIZE} actors"
            )
        if not actors:
            return []
        data = await self._xrpc.query(
            GET_PROFILES_NSID,
            params={"actors": list(actors)},
            headers={"atproto-proxy": APPVIEW_PROXY},
        )
        return _objects(data.get("profiles"))

    async def list_records(
        self,
        collection: str,
        limit: int = LIST_RECORDS_PAGE_SIZE,
        cursor: str | None = None,
    ) -> RecordPage:
        params: dict[str, Any] = {
            "repo": self.did,
            "collection": collection,
            "limit": limit,
        }
        if cursor:
            params["cursor"] = cursor
        data = await self._xrpc.query(LIST_RECORDS_NSID, params=params)
        next_cursor = data.get("cursor")
        return RecordPage(
            records=_objects(data.get("records")),
            cursor=next_cursor if isinstance(next_cursor, str) and next_cursor else None,
        )

    async def create_record(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        return await self._xrpc.procedure(
            CREATE_RECORD_NSID,
            {"repo": self.did, "collection": collection, "record": record},
        )
