"""Batch actor search route.

``POST /api/search/batch-search-actors`` searches up to 50 imported
usernames at once.  Rate limit: ``SEARCH_RATE_LIMIT`` (10/minute) per
session.
"""

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Request

from skybridge.api.dependencies import get_actor_search_ranker, get_resolved_agent
from skybridge.api.limiter import limiter, search_limit
from skybridge.core.actor_search import ActorSearchRanker
from skybridge.core.schemas.search import BatchSearchRequest, BatchSearchResponse
from skybridge.core.session_agent import ResolvedAgent

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/batch-search-actors")
@limiter.limit(search_limit)
async def batch_search_actors(
    request: Request,  # noqa: ARG001
    body: BatchSearchRequest,
    resolved: Annotated[ResolvedAgent, Depends(get_resolved_agent)],
    ranker: Annotated[ActorSearchRanker, Depends(get_actor_search_ranker)],
) -> dict[str, Any]:
    """Search the directory for every username and rank the candidates.

    Returns ``{"success": true, "data": {"results": [...]}}`` with one result
    per username, in request order.  Per-username failures appear in that
    result's ``error`` field.
    """
    log = logger.bind(did=resolved.did, usernames=len(body.usernames))
    log.info("search.batch_started")

    results = await ranker.search_batch(
        resolved.agent, body.usernames, body.follow_lexicon
    )

    log.info(
        "search.batch_finished",
        actors=sum(len(r.actors) for r in results),
    )
    payload = BatchSearchResponse(results=results)
    return {"success": True, "data": payload.model_dump(by_alias=True)}
