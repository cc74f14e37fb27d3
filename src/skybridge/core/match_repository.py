"""Follow-status mirror into the ``atproto_matches`` history table.

``follow_status`` is a JSONB map keyed by lexicon.  Updates merge a single
key into it so statuses recorded for other lexicons are preserved.
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

_UPDATE_FOLLOW_STATUS = text(
    "UPDATE atproto_matches "
    "SET follow_status = COALESCE(follow_status, '{}'::jsonb) "
    "|| jsonb_build_object(CAST(:lexicon AS text), CAST(:is_following AS boolean)) "
    "WHERE atproto_did = :did"
)


class MatchRepository:
    """Writes follow state onto every match row for an identity."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def update_follow_status(self, did: str, lexicon: str, is_following: bool) -> int:
        """Set ``follow_status[lexicon]`` on all rows for *did*.

        Returns:
            Number of rows updated.  Zero is normal: a follow can be issued
            for an identity that was never persisted as a match.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                _UPDATE_FOLLOW_STATUS,
                {"did": did, "lexicon": lexicon, "is_following": is_following},
            )
            await session.commit()
        logger.debug(
            "match_repository: follow status updated",
            extra={"did": did, "lexicon": lexicon, "rows": result.rowcount},
        )
        return result.rowcount
