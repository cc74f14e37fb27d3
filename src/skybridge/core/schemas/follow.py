"""Pydantic schemas for batch follow and follow-status checks."""

from __future__ import annotations

from typing import Optional

from pydantic import Field, field_validator

from skybridge.core.schemas.base import CamelModel, default_follow_lexicon


class FollowResult(CamelModel):
    """Outcome of one follow attempt.

    Attributes:
        did: Target identity.
        success: ``True`` if the target is followed after this call
            (newly or already).
        already_following: ``True`` when no mutation was issued because the
            follow already existed.
        error: Upstream error message when ``success`` is ``False``.
    """

    did: str
    success: bool
    already_following: bool = False
    error: Optional[str] = None


class BatchFollowResult(CamelModel):
    """Aggregate outcome; ``succeeded + failed == total`` always holds."""

    total: int
    succeeded: int
    failed: int
    already_following: int
    results: list[FollowResult]


class _DidListRequest(CamelModel):
    dids: list[str] = Field(..., min_length=1, max_length=100)
    follow_lexicon: str = Field(default_factory=default_follow_lexicon, min_length=1)

    @field_validator("dids")
    @classmethod
    def dids_are_identifiers(cls, v: list[str]) -> list[str]:
        """Reject entries that are not ``did:`` identifiers."""
        for did in v:
            if not did.startswith("did:"):
                raise ValueError(f"invalid DID: {did!r}")
        return v


class BatchFollowRequest(_DidListRequest):
    """Body of ``POST /api/follow/batch-follow-users``."""


class CheckStatusRequest(_DidListRequest):
    """Body of ``POST /api/follow/check-status``."""


class CheckStatusResponse(CamelModel):
    follow_status: dict[str, bool]
