"""OAuth client for restoring, refreshing and revoking stored sessions.

Only the lifecycle around an already-issued session lives here; the
authorize / callback handshake that creates the credential is handled
elsewhere and writes through the same
:class:`~skybridge.core.credential_store.OAuthSessionStore`.

Two client shapes are supported, chosen from the request host:

- **loopback** (``localhost`` / ``127.0.0.1`` without a forwarding proxy):
  a public client whose ``client_id`` is ``http://localhost?...``.
- **confidential**: ``client_id`` is the URL of the published client
  metadata document and token requests carry a ``private_key_jwt``
  assertion signed with ``OAUTH_PRIVATE_KEY``.

Building a client resolves metadata and loads the signing key, and each
client memoises authorization-server metadata, so callers cache clients
(see :class:`~skybridge.core.session_agent.SessionAgentProvider`).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from urllib.parse import urlencode

import httpx
from cryptography.hazmat.primitives.asymmetric import ec

from skybridge.atproto.agent import Agent
from skybridge.atproto.config import (
    AUTH_SERVER_METADATA_PATH,
    CALLBACK_PATH,
    CLIENT_METADATA_PATH,
    JWKS_PATH,
    TOKEN_REFRESH_MARGIN_SECONDS,
)
from skybridge.atproto.dpop import (
    create_client_assertion,
    load_private_key_pem,
    private_key_from_jwk,
    public_jwk,
)
from skybridge.atproto.xrpc import DpopHttp, XrpcClient, response_json
from skybridge.config.settings import Settings
from skybridge.core.credential_store import OAuthCredential, OAuthSessionStore, TokenSet
from skybridge.core.exceptions import ConfigurationError, OAuthSessionError

logger = logging.getLogger(__name__)

_CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"


# ---------------------------------------------------------------------------
# Host context and client metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HostContext:
    """The host a request arrived on, as seen through any reverse proxy."""

    host: str | None
    forwarded_host: str | None = None
    forwarded_proto: str = "https"

    @property
    def is_loopback(self) -> bool:
        if self.forwarded_host:
            return False
        return not self.host or "localhost" in self.host or "127.0.0.1" in self.host

    @property
    def cache_label(self) -> str:
        return self.forwarded_host or self.host or "default"

    @property
    def base_url(self) -> str:
        host = self.forwarded_host or self.host
        if not host:
            raise ConfigurationError("No host available for OAuth client configuration")
        return f"{self.forwarded_proto}://{host}"


@dataclass(frozen=True)
class ClientMetadata:
    """OAuth client registration, as published at ``client_id``."""

    client_id: str
    redirect_uri: str
    scope: str
    token_endpoint_auth_method: str
    jwks_uri: str | None = None
    client_name: str | None = None
    client_uri: str | None = None

    @property
    def is_confidential(self) -> bool:
        return self.token_endpoint_auth_method == "private_key_jwt"

    def to_document(self) -> dict[str, Any]:
        """Client metadata document served at ``client_id``."""
        doc: dict[str, Any] = {
            "client_id": self.client_id,
            "redirect_uris": [self.redirect_uri],
            "scope": self.scope,
            "grant_types": ["authorization_code", "refresh_token"],
            "response_types": ["code"],
            "application_type": "web",
            "token_endpoint_auth_method": self.token_endpoint_auth_method,
            "dpop_bound_access_tokens": True,
        }
        if self.client_name:
            doc["client_name"] = self.client_name
        if self.client_uri:
            doc["client_uri"] = self.client_uri
        if self.is_confidential:
            doc["token_endpoint_auth_signing_alg"] = "ES256"
            doc["jwks_uri"] = self.jwks_uri
        return doc


def resolve_client_metadata(host: HostContext, settings: Settings) -> ClientMetadata:
    """Derive the client registration for *host*."""
    if host.is_loopback:
        current = host.host or "localhost:3000"
        origin = "http://127.0.0.1" if "127.0.0.1" in current else "http://localhost"
        port = current.split(":")[1] if ":" in current else "3000"
        redirect_uri = f"{origin}:{port}{CALLBACK_PATH}"
        client_id = "http://localhost?" + urlencode(
            [("redirect_uri", redirect_uri), ("scope", settings.oauth_scopes)]
        )
        return ClientMetadata(
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=settings.oauth_scopes,
            token_endpoint_auth_method="none",
        )

    base_url = host.base_url
    return ClientMetadata(
        client_id=f"{base_url}{CLIENT_METADATA_PATH}",
        redirect_uri=f"{base_url}{CALLBACK_PATH}",
        scope=settings.oauth_scopes,
        token_endpoint_auth_method="private_key_jwt",
        jwks_uri=f"{base_url}{JWKS_PATH}",
        client_name=settings.client_name,
        client_uri=base_url,
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class OAuthClient:
    """Restores stored credentials into live :class:`Agent` instances.

    Args:
        metadata: This client's registration.
        session_store: Where credentials are read from and written back to.
        http: Shared HTTP client.  Not closed by this class.
        signing_key: P-256 key for ``private_key_jwt``; required when
            *metadata* is confidential.
        key_id: ``kid`` placed in client assertion headers.
        clock: Wall-clock source (seconds since the epoch).

    Raises:
        ConfigurationError: If a confidential client has no signing key.
    """

    def __init__(
        self,
        metadata: ClientMetadata,
        session_store: OAuthSessionStore,
        http: httpx.AsyncClient,
        signing_key: ec.EllipticCurvePrivateKey | None = None,
        key_id: str = "atlast-key-1",
        clock: Callable[[], float] = time.time,
    ) -> None:
        if metadata.is_confidential and signing_key is None:
            raise ConfigurationError(
                "OAUTH_PRIVATE_KEY is required for a confidential OAuth client"
            )
        self.metadata = metadata
        self._store = session_store
        self._http = http
        self._signing_key = signing_key
        self._key_id = key_id
        self._clock = clock
        self._server_metadata_cache: dict[str, dict[str, Any]] = {}
        self._nonces: dict[str, str] = {}

    async def restore(self, did: str) -> Agent:
        """Load the credential for *did*, refresh it if needed, and build an agent.

        Raises:
            OAuthSessionError: If no usable credential exists or the refresh
                was rejected.
        """
        credential = await self._store.get(did)
        if credential is None:
            raise OAuthSessionError("No stored OAuth session", did=did)

        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        if credential.token_set.expires_within(TOKEN_REFRESH_MARGIN_SECONDS, now=now):
            credential = await self._refresh(credential)

        try:
            dpop_key = private_key_from_jwk(credential.dpop_jwk)
        except (ValueError, KeyError) as exc:
            raise OAuthSessionError("Stored DPoP key is unusable", did=did) from exc

        transport = DpopHttp(self._http, dpop_key, nonces=self._nonces)
        xrpc = XrpcClient(
            transport,
            service=credential.token_set.aud,
            access_token=credential.token_set.access_token,
        )
        return Agent(did, xrpc)

    async def revoke(self, did: str) -> None:
        """Revoke the tokens for *did* and delete its stored credential.

        The credential is deleted even when the revocation request fails;
        the failure is then re-raised for the caller to log.
        """
        credential = await self._store.get(did)
        try:
            if credential is not None:
                await self._revoke_tokens(credential)
        finally:
            await self._store.delete(did)

    # ------------------------------------------------------------------
    # Token endpoint interaction
    # ------------------------------------------------------------------

    async def _refresh(self, credential: OAuthCredential) -> OAuthCredential:
        token_set = credential.token_set
        if not token_set.refresh_token:
            raise OAuthSessionError("Access token expired and no refresh token", did=credential.did)

        server = await self._get_server_metadata(token_set.iss)
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": token_set.refresh_token,
            **self._client_auth(token_set.iss),
        }
        response = await self._post_form(credential, server["token_endpoint"], payload)

        if not response.is_success:
            body = response_json(response)
            if body.get("error") == "invalid_grant":
                logger.warning(
                    "oauth_client: refresh token rejected; deleting session",
                    extra={"did": credential.did},
                )
                await self._store.delete(credential.did)
            raise OAuthSessionError(
                f"Token refresh failed: HTTP {response.status_code}", did=credential.did
            )

        body = response_json(response)
        if body.get("sub", token_set.sub) != credential.did:
            raise OAuthSessionError("Token refresh returned a different subject", did=credential.did)

        expires_at = None
        if body.get("expires_in") is not None:
            issued = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
            expires_at = (issued + timedelta(seconds=int(body["expires_in"]))).isoformat()

        refreshed = OAuthCredential(
            did=credential.did,
            dpop_jwk=credential.dpop_jwk,
            auth_method=credential.auth_method,
            token_set=TokenSet(
                iss=token_set.iss,
                sub=credential.did,
                aud=token_set.aud,
                access_token=body["access_token"],
                token_type=body.get("token_type", token_set.token_type),
                scope=body.get("scope", token_set.scope),
                refresh_token=body.get("refresh_token", token_set.refresh_token),
                expires_at=expires_at,
            ),
        )
        await self._store.set(credential.did, refreshed)
        logger.info("oauth_client: token set refreshed", extra={"did": credential.did})
        return refreshed

    async def _revoke_tokens(self, credential: OAuthCredential) -> None:
        server = await self._get_server_metadata(credential.token_set.iss)
        endpoint = server.get("revocation_endpoint")
        if not endpoint:
            return
        payload = {
            "token": credential.token_set.access_token,
            **self._client_auth(credential.token_set.iss),
        }
        response = await self._post_form(credential, endpoint, payload)
        if not response.is_success:
            raise OAuthSessionError(
                f"Token revocation failed: HTTP {response.status_code}", did=credential.did
            )

    async def _post_form(
        self,
        credential: OAuthCredential,
        url: str,
        payload: dict[str, Any],
    ) -> httpx.Response:
        try:
            dpop_key = private_key_from_jwk(credential.dpop_jwk)
        except (ValueError, KeyError) as exc:
            raise OAuthSessionError("Stored DPoP key is unusable", did=credential.did) from exc
        transport = DpopHttp(self._http, dpop_key, nonces=self._nonces)
        try:
            return await transport.request("POST", url, data=payload)
        except httpx.RequestError as exc:
            raise OAuthSessionError(f"Token endpoint unreachable: {exc}", did=credential.did) from exc

    def _client_auth(self, audience: str) -> dict[str, str]:
        params = {"client_id": self.metadata.client_id}
        if not self.metadata.is_confidential:
            return params
        if self._signing_key is None:
            raise ConfigurationError(
                "OAUTH_PRIVATE_KEY is required for a confidential OAuth client"
            )
        assertion = create_client_assertion(
            self._signing_key,
            client_id=self.metadata.client_id,
            audience=audience,
            key_id=self._key_id,
            now=self._clock(),
        )
        params["client_assertion_type"] = _CLIENT_ASSERTION_TYPE
        params["client_assertion"] = assertion
        return params

    async def _get_server_metadata(self, issuer: str) -> dict[str, Any]:
        cached = self._server_metadata_cache.get(issuer)
        if cached is not None:
            return cached
        url = issuer.rstrip("/") + AUTH_SERVER_METADATA_PATH
        try:
            response = await self._http.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise OAuthSessionError(f"Authorization server metadata unavailable: {exc}") from exc
        metadata = response_json(response)
        if "token_endpoint" not in metadata:
            raise OAuthSessionError("Authorization server metadata has no token_endpoint")
        self._server_metadata_cache[issuer] = metadata
        return metadata


def build_oauth_client(
    host: HostContext,
    settings: Settings,
    session_store: OAuthSessionStore,
    http: httpx.AsyncClient,
) -> OAuthClient:
    """Construct the OAuth client appropriate for *host*.

    Raises:
        ConfigurationError: If a confidential client is needed and
            ``OAUTH_PRIVATE_KEY`` is missing or invalid.
    """
    metadata = resolve_client_metadata(host, settings)
    signing_key = None
    if metadata.is_confidential:
        if not settings.oauth_private_key:
            raise ConfigurationError(
                "OAUTH_PRIVATE_KEY is required for a confidential OAuth client"
            )
        signing_key = load_private_key_pem(settings.oauth_private_key)
    logger.debug(
        "oauth_client: built client",
        extra={"client_id": metadata.client_id, "confidential": metadata.is_confidential},
    )
    return OAuthClient(
        metadata,
        session_store,
        http,
        signing_key=signing_key,
        key_id=settings.oauth_key_id,
    )


def client_jwks(settings: Settings) -> dict[str, Any]:
    """Public key set served at ``jwks_uri``; empty when no key is configured."""
    if not settings.oauth_private_key:
        return {"keys": []}
    key = load_private_key_pem(settings.oauth_private_key)
    return {"keys": [public_jwk(key, kid=settings.oauth_key_id)]}
