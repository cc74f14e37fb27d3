"""Follow-status resolution against the caller's own follow collection.

The caller's follow records are paged through (``listRecords``, 100 per
page) only until every target has been seen or the collection is
exhausted, so accounts with tens of thousands of follows usually need a
single call.

Upstream failures are handled according to :class:`FailSafePolicy`.  The
default, ``ASSUME_NOT_FOLLOWING``, reports every target as not followed.
``FAIL_CLOSED`` re-raises the typed upstream error.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable
from typing import Any

from skybridge.atproto.agent import AgentProtocol
from skybridge.atproto.config import DEFAULT_FOLLOW_LEXICON, LIST_RECORDS_PAGE_SIZE
from skybridge.core.exceptions import UpstreamError

logger = logging.getLogger(__name__)


class FailSafePolicy(str, enum.Enum):
    """What :class:`FollowStatusResolver` does when the listing fails."""

    ASSUME_NOT_FOLLOWING = "assume_not_following"
    FAIL_CLOSED = "fail_closed"


def _record_subject(record: Any) -> str | None:
    if not isinstance(record, dict):
        return None
    value = record.get("value")
    if not isinstance(value, dict):
        return None
    subject = value.get("subject")
    return subject if isinstance(subject, str) else None


class FollowStatusResolver:
    """Determines which target identities the caller already follows.

    Args:
        policy: Behaviour on upstream failure.
        page_size: Records requested per ``listRecords`` call.
    """

    def __init__(
        self,
        policy: FailSafePolicy = FailSafePolicy.ASSUME_NOT_FOLLOWING,
        page_size: int = LIST_RECORDS_PAGE_SIZE,
    ) -> None:
        self.policy = policy
        self._page_size = page_size

    async def check_status(
        self,
        agent: AgentProtocol,
        targets: Iterable[str],
        lexicon: str = DEFAULT_FOLLOW_LEXICON,
    ) -> dict[str, bool]:
        """Return ``{did: is_followed}`` for exactly the given targets.

        The agent's own identity is the repository that is listed.

        Raises:
            UpstreamError: Only under ``FailSafePolicy.FAIL_CLOSED``.
        """
        result = {did: False for did in targets}
        if not result:
            return result

        remaining = set(result)
        cursor: str | None = None
        pages = 0
        try:
            while True:
                page = await agent.list_records(
                    lexicon, limit=self._page_size, cursor=cursor
                )
                pages += 1
                for record in page.records:
                    subject = _record_subject(record)
                    if subject in remaining:
                        result[subject] = True
                        remaining.discard(subject)
                cursor = page.cursor
                if not cursor or not remaining:
                    break
        except UpstreamError as exc:
            if self.policy is FailSafePolicy.FAIL_CLOSED:
                raise
            logger.warning(
                "follow_status: listing failed, assuming not following",
                extra={
                    "lexicon": lexicon,
                    "targets": len(result),
                    "kind": exc.kind.value,
                    "error": str(exc),
                },
            )
            return {did: False for did in result}

        logger.debug(
            "follow_status: resolved",
            extra={"lexicon": lexicon, "pages": pages, "found": len(result) - len(remaining)},
        )
        return result

    async def get_already_following(
        self,
        agent: AgentProtocol,
        targets: Iterable[str],
        lexicon: str = DEFAULT_FOLLOW_LEXICON,
    ) -> set[str]:
        """Return the subset of *targets* the caller already follows."""
        status = await self.check_status(agent, targets, lexicon)
        return {did for did, following in status.items() if following}
