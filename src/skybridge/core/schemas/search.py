"""Pydantic schemas for batch actor search.

Fields serialise with camelCase aliases (``matchScore``, ``followStatus``)
because that is the shape the web client consumes.  Construct models with
either the Python field name or the alias.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field, field_validator

from skybridge.core.schemas.base import CamelModel, default_follow_lexicon

_SEPARATORS = str.maketrans("", "", "._-")


class ActorCandidate(CamelModel):
    """A directory search hit scored against the query.

    Attributes:
        did: The account's decentralized identifier.
        handle: Full handle, e.g. ``alice.bsky.social``.
        display_name: Profile display name, if set.
        avatar: Avatar image URL, if set.
        description: Profile bio, if set.
        match_score: Ranking tier, 0 to 100.  Zero-score candidates are never
            returned.
    """

    did: str
    handle: str
    display_name: Optional[str] = None
    avatar: Optional[str] = None
    description: Optional[str] = None
    match_score: int = Field(ge=0, le=100)


class EnrichedActor(ActorCandidate):
    """A ranked candidate with profile statistics and follow status."""

    post_count: int = 0
    follower_count: int = 0
    follow_status: dict[str, bool] = Field(default_factory=dict)


class SearchResult(CamelModel):
    """Outcome for one requested username, in request order."""

    username: str
    actors: list[EnrichedActor] = Field(default_factory=list)
    error: Optional[str] = None


class BatchSearchRequest(CamelModel):
    """Body of ``POST /api/search/batch-search-actors``."""

    usernames: list[str] = Field(..., min_length=1, max_length=50)
    follow_lexicon: str = Field(default_factory=default_follow_lexicon, min_length=1)

    @field_validator("usernames")
    @classmethod
    def usernames_are_searchable(cls, v: list[str]) -> list[str]:
        """Reject usernames with nothing left after dropping separators."""
        for username in v:
            if not username.translate(_SEPARATORS).strip():
                raise ValueError(f"invalid username: {username!r}")
        return v


class BatchSearchResponse(CamelModel):
    results: list[SearchResult]
