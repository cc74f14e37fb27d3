"""Batch actor search: ranking, profile enrichment and follow status.

For each imported username the remote directory is searched (20 candidates)
and every candidate is scored against the normalised username.  The first
matching tier wins:

====  ==================================================
100   handle local part equals the query
 90   full handle equals the query
 80   display name equals the query
 60   handle local part contains the query
 50   full handle contains the query
 40   display name contains the query
 30   query contains the handle local part
  0   no match (dropped)
====  ==================================================

The top five survivors per username are then enriched in two batch-wide
passes: profile statistics (``getProfiles``, 25 identities per call) and a
single follow-status resolution over the union of all surviving identities.
Neither pass can fail the search; affected actors keep zero counts or a
``False`` follow status.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from skybridge.atproto.agent import AgentProtocol
from skybridge.atproto.config import (
    DEFAULT_FOLLOW_LEXICON,
    GET_PROFILES_BATCH_SIZE,
    SEARCH_ACTORS_LIMIT,
)
from skybridge.core.follow_status import FollowStatusResolver
from skybridge.core.schemas.search import ActorCandidate, EnrichedActor, SearchResult

logger = logging.getLogger(__name__)

MAX_ACTORS_PER_USERNAME = 5
_SEPARATORS = str.maketrans("", "", "._-")


def normalize(value: str) -> str:
    """Lower-case *value* and strip ``.``, ``_`` and ``-``."""
    return value.lower().translate(_SEPARATORS)


def score_candidate(query: str, handle: str, display_name: str | None) -> int:
    """Score one candidate against an already-normalised *query*."""
    local_part = normalize(handle.split(".")[0])
    full_handle = normalize(handle)
    name = normalize(display_name or "")

    if local_part == query:
        return 100
    if full_handle == query:
        return 90
    if name == query:
        return 80
    if query in local_part:
        return 60
    if query in full_handle:
        return 50
    if query in name:
        return 40
    if local_part in query:
        return 30
    return 0


def rank_candidates(
    username: str,
    actors: Sequence[dict[str, Any]],
    limit: int = MAX_ACTORS_PER_USERNAME,
) -> list[ActorCandidate]:
    """Score, drop zero scores, sort descending (stable) and keep *limit*.

    A username that normalises to an empty string matches nothing.
    """
    query = normalize(username)
    if not query:
        return []
    ranked: list[ActorCandidate] = []
    for actor in actors:
        if not isinstance(actor, dict) or not isinstance(actor.get("did"), str):
            continue
        handle = actor.get("handle") or ""
        score = score_candidate(query, handle, actor.get("displayName"))
        if score <= 0:
            continue
        ranked.append(
            ActorCandidate(
                did=actor["did"],
                handle=handle,
                display_name=actor.get("displayName"),
                avatar=actor.get("avatar"),
                description=actor.get("description"),
                match_score=score,
            )
        )
    ranked.sort(key=lambda candidate: candidate.match_score, reverse=True)
    return ranked[:limit]


def _count(value: Any) -> int:
    return value if isinstance(value, int) and value > 0 else 0


class ActorSearchRanker:
    """Runs one batch search on behalf of an authenticated agent.

    Args:
        resolver: Follow-status resolver used for the enrichment pass.
        search_limit: Candidates requested per username.
        profile_batch_size: Identities per ``getProfiles`` call.
    """

    def __init__(
        self,
        resolver: FollowStatusResolver,
        search_limit: int = SEARCH_ACTORS_LIMIT,
        profile_batch_size: int = GET_PROFILES_BATCH_SIZE,
    ) -> None:
        self._resolver = resolver
        self._search_limit = search_limit
        self._profile_batch_size = profile_batch_size

    async def search_batch(
        self,
        agent: AgentProtocol,
        usernames: Sequence[str],
        lexicon: str = DEFAULT_FOLLOW_LEXICON,
    ) -> list[SearchResult]:
        """Search every username concurrently and return results in input order."""
        ranked = await asyncio.gather(
            *(self._search_one(agent, username) for username in usernames)
        )

        dids = list(dict.fromkeys(c.did for _, candidates, _ in ranked for c in candidates))
        profiles = await self._fetch_profile_stats(agent, dids) if dids else {}
        follow_status = await self._fetch_follow_status(agent, dids, lexicon) if dids else {}

        results: list[SearchResult] = []
        for username, candidates, error in ranked:
            actors = []
            for candidate in candidates:
                post_count, follower_count = profiles.get(candidate.did, (0, 0))
                actors.append(
                    EnrichedActor(
                        **candidate.model_dump(),
                        post_count=post_count,
                        follower_count=follower_count,
                        follow_status={lexicon: follow_status.get(candidate.did, False)},
                    )
                )
            results.append(SearchResult(username=username, actors=actors, error=error))

        logger.info(
            "actor_search: batch complete",
            extra={
                "usernames": len(usernames),
                "actors": len(dids),
                "failed": sum(1 for _, _, error in ranked if error),
            },
        )
        return results

    async def _search_one(
        self,
        agent: AgentProtocol,
        username: str,
    ) -> tuple[str, list[ActorCandidate], str | None]:
        try:
            actors = await agent.search_actors(username, limit=self._search_limit)
            return username, rank_candidates(username, actors), None
        except Exception as exc:
            logger.warning(
                "actor_search: search failed",
                extra={"username": username, "error": str(exc)},
            )
            return username, [], str(exc) or "Search failed"

    async def _fetch_profile_stats(
        self,
        agent: AgentProtocol,
        dids: list[str],
    ) -> dict[str, tuple[int, int]]:
        stats: dict[str, tuple[int, int]] = {}
        for start in range(0, len(dids), self._profile_batch_size):
            batch = dids[start:start + self._profile_batch_size]
            try:
                profiles = await agent.get_profiles(batch)
            except Exception as exc:
                logger.warning(
                    "actor_search: profile batch failed",
                    extra={"batch_start": start, "batch_size": len(batch), "error": str(exc)},
                )
                continue
            for profile in profiles:
                if not isinstance(profile, dict) or not isinstance(profile.get("did"), str):
                    continue
                stats[profile["did"]] = (
                    _count(profile.get("postsCount")),
                    _count(profile.get("followersCount")),
                )
        return stats

    async def _fetch_follow_status(
        self,
        agent: AgentProtocol,
        dids: list[str],
        lexicon: str,
    ) -> dict[str, bool]:
        try:
            return await self._resolver.check_status(agent, dids, lexicon)
        except Exception as exc:
            logger.warning(
                "actor_search: follow status check failed",
                extra={"lexicon": lexicon, "error": str(exc)},
            )
            return {}
