"""Session and OAuth client-discovery routes.

``GET  /api/auth/session``              current session identity
``POST /api/auth/logout``               revoke, forget and clear the cookie
``GET  /api/auth/client-metadata.json`` OAuth client metadata document
``GET  /api/auth/jwks.json``            public signing key set

The authorize / callback handshake that creates sessions is served by a
separate deployment unit.
"""

from __future__ import annotations

from typing import Annotated, Any, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from skybridge.api.dependencies import (
    find_session_id,
    get_host_context,
    get_session_agent_provider,
    get_user_session_store,
)
from skybridge.atproto.oauth_client import HostContext, client_jwks, resolve_client_metadata
from skybridge.config.settings import get_settings
from skybridge.core.credential_store import UserSessionStore
from skybridge.core.session_agent import SessionAgentProvider
from skybridge.core.session_security import build_fingerprint, fingerprint_matches

logger = structlog.get_logger(__name__)

router = APIRouter()


def _unauthorized(message: str) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": message},
        status_code=status.HTTP_401_UNAUTHORIZED,
    )


@router.get("/session")
async def get_session(
    request: Request,
    store: Annotated[UserSessionStore, Depends(get_user_session_store)],
    session: Annotated[Optional[str], Query()] = None,
) -> Any:
    """Return the identity bound to the session cookie (or ``?session=``).

    A session whose stored user agent differs from the current request's is
    rejected.
    """
    session_id = session or find_session_id(request)
    if not session_id:
        return _unauthorized("No session cookie")

    record = await store.get(session_id)
    if record is None:
        return _unauthorized("Invalid or expired session")

    if record.fingerprint.get("userAgent"):
        current = build_fingerprint(
            request.headers.get("user-agent"),
            forwarded_for=request.headers.get("x-forwarded-for"),
            client_ip=request.client.host if request.client else None,
        )
        if not fingerprint_matches(record.fingerprint, current):
            logger.warning("auth.session_fingerprint_mismatch", did=record.did)
            return _unauthorized("Invalid or expired session")

    return {"success": True, "data": {"did": record.did, "sessionId": session_id}}


@router.post("/logout")
async def logout(
    request: Request,
    host: Annotated[HostContext, Depends(get_host_context)],
    provider: Annotated[SessionAgentProvider, Depends(get_session_agent_provider)],
) -> Any:
    """Log out.  Safe to call without a session or more than once."""
    settings = get_settings()
    session_id = find_session_id(request)
    if session_id:
        await provider.revoke_and_delete(session_id, host)

    response = JSONResponse({"success": True})
    for cookie_name in (settings.session_cookie_name, settings.dev_session_cookie_name):
        response.delete_cookie(
            cookie_name,
            path="/",
            httponly=True,
            samesite="lax",
            secure=not host.is_loopback,
        )
    return response


@router.get("/client-metadata.json")
async def client_metadata(
    host: Annotated[HostContext, Depends(get_host_context)],
) -> Any:
    metadata = resolve_client_metadata(host, get_settings())
    return JSONResponse(metadata.to_document(), headers={"Cache-Control": "no-store"})


@router.get("/jwks.json")
async def jwks() -> Any:
    return JSONResponse(
        client_jwks(get_settings()),
        headers={"Cache-Control": "public, max-age=3600"},
    )
