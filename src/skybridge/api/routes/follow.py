"""Batch follow and follow-status routes.

``POST /api/follow/batch-follow-users``
    Follow up to 100 identities.  At most five ``createRecord`` calls are in
    flight at once.

``POST /api/follow/check-status``
    Report which of up to 100 identities the caller already follows.

Both share the ``FOLLOW_RATE_LIMIT`` (100/hour) per session.
"""

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Request

from skybridge.api.dependencies import (
    get_batch_follow_orchestrator,
    get_follow_status_resolver,
    get_resolved_agent,
)
from skybridge.api.limiter import follow_limit, limiter
from skybridge.core.batch_follow import BatchFollowOrchestrator
from skybridge.core.follow_status import FollowStatusResolver
from skybridge.core.schemas.follow import (
    BatchFollowRequest,
    CheckStatusRequest,
    CheckStatusResponse,
)
from skybridge.core.session_agent import ResolvedAgent

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/batch-follow-users")
@limiter.limit(follow_limit)
async def batch_follow_users(
    request: Request,  # noqa: ARG001
    body: BatchFollowRequest,
    resolved: Annotated[ResolvedAgent, Depends(get_resolved_agent)],
    orchestrator: Annotated[BatchFollowOrchestrator, Depends(get_batch_follow_orchestrator)],
) -> dict[str, Any]:
    """Follow every identity in ``dids``; one result per identity."""
    log = logger.bind(did=resolved.did, targets=len(body.dids))
    log.info("follow.batch_started", lexicon=body.follow_lexicon)

    summary = await orchestrator.follow_batch(
        resolved.agent, body.dids, body.follow_lexicon
    )

    log.info(
        "follow.batch_finished",
        succeeded=summary.succeeded,
        failed=summary.failed,
        already_following=summary.already_following,
    )
    return {"success": True, "data": summary.model_dump(by_alias=True)}


@router.post("/check-status")
@limiter.limit(follow_limit)
async def check_follow_status(
    request: Request,  # noqa: ARG001
    body: CheckStatusRequest,
    resolved: Annotated[ResolvedAgent, Depends(get_resolved_agent)],
    resolver: Annotated[FollowStatusResolver, Depends(get_follow_status_resolver)],
) -> dict[str, Any]:
    """Return ``{did: bool}`` for every requested identity."""
    status = await resolver.check_status(
        resolved.agent, body.dids, body.follow_lexicon
    )
    payload = CheckStatusResponse(follow_status=status)
    return {"success": True, "data": payload.model_dump(by_alias=True)}
