"""Concurrent, throttled batch follow.

Already-followed targets are detected up front and short-circuited without
a remote call.  The remaining targets are followed with at most
``max_in_flight`` (default 5) ``createRecord`` calls outstanding; a slot is
refilled as soon as any call settles.

A rate-limited call is not retried.  The orchestrator sleeps for
``rate_limit_pause`` seconds while still holding its slot, then reports the
failure, which slows the rest of the batch down.

Successful follows are mirrored into the match history through a
:class:`FollowStatusSink`.  Mirroring is best effort: a failure is logged
and never changes the item's result.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timezone
from typing import Any, Protocol

from skybridge.atproto.agent import AgentProtocol
from skybridge.atproto.config import DEFAULT_FOLLOW_LEXICON
from skybridge.core.exceptions import UpstreamError
from skybridge.core.follow_status import FollowStatusResolver
from skybridge.core.schemas.follow import BatchFollowResult, FollowResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_IN_FLIGHT = 5
DEFAULT_RATE_LIMIT_PAUSE = 1.0


class FollowStatusSink(Protocol):
    """Persistence collaborator that records follow state per identity."""

    async def update_follow_status(self, did: str, lexicon: str, is_following: bool) -> None:
        ...


class BatchFollowOrchestrator:
    """Follows a list of identities on behalf of an authenticated agent.

    Args:
        resolver: Used once per batch to find targets already followed.
        sink: Best-effort mirror of follow state; ``None`` disables mirroring.
        max_in_flight: Upper bound on concurrent ``createRecord`` calls.
        rate_limit_pause: Seconds to hold the slot after a rate-limited call.
        sleep: Awaitable sleep; injected by tests.
    """

    def __init__(
        self,
        resolver: FollowStatusResolver,
        sink: FollowStatusSink | None = None,
        max_in_flight: int = DEFAULT_MAX_IN_FLIGHT,
        rate_limit_pause: float = DEFAULT_RATE_LIMIT_PAUSE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")
        self._resolver = resolver
        self._sink = sink
        self._max_in_flight = max_in_flight
        self._rate_limit_pause = rate_limit_pause
        self._sleep = sleep

    async def follow_batch(
        self,
        agent: AgentProtocol,
        targets: Sequence[str],
        lexicon: str = DEFAULT_FOLLOW_LEXICON,
    ) -> BatchFollowResult:
        """Follow every target and return one result per target, in order."""
        already_following = await self._resolver.get_already_following(
            agent, targets, lexicon
        )
        slots = asyncio.Semaphore(self._max_in_flight)

        results = await asyncio.gather(
            *(
                self._follow_one(agent, did, lexicon, did in already_following, slots)
                for did in targets
            )
        )

        succeeded = sum(1 for r in results if r.success)
        summary = BatchFollowResult(
            total=len(targets),
            succeeded=succeeded,
            failed=len(targets) - succeeded,
            already_following=sum(1 for r in results if r.already_following),
            results=list(results),
        )
        logger.info(
            "batch_follow: completed",
            extra={
                "did": agent.did,
                "total": summary.total,
                "succeeded": summary.succeeded,
                "failed": summary.failed,
                "already_following": summary.already_following,
            },
        )
        return summary

    async def _follow_one(
        self,
        agent: AgentProtocol,
        did: str,
        lexicon: str,
        is_followed: bool,
        slots: asyncio.Semaphore,
    ) -> FollowResult:
        if is_followed:
            await self._mirror(did, lexicon)
            return FollowResult(did=did, success=True, already_following=True)

        async with slots:
            record = {
                "$type": lexicon,
                "subject": did,
                "createdAt": datetime.now(tz=timezone.utc).isoformat(),
            }
            try:
                await agent.create_record(lexicon, record)
            except Exception as exc:
                if isinstance(exc, UpstreamError) and exc.is_rate_limited:
                    logger.warning(
                        "batch_follow: rate limited, pausing",
                        extra={"target": did, "pause_seconds": self._rate_limit_pause},
                    )
                    await self._sleep(self._rate_limit_pause)
                return FollowResult(did=did, success=False, error=str(exc) or "Follow failed")

        await self._mirror(did, lexicon)
        return FollowResult(did=did, success=True)

    async def _mirror(self, did: str, lexicon: str) -> None:
        if self._sink is None:
            return
        try:
            await self._sink.update_follow_status(did, lexicon, True)
        except Exception as exc:
            logger.error(
                "batch_follow: failed to mirror follow status",
                extra={"target": did, "lexicon": lexicon, "error": str(exc)},
            )
