"""Unit tests for the OAuth client lifecycle (restore, refresh, revoke).

Tests cover:
- Client metadata for loopback and confidential hosts.
- Confidential clients require a signing key.
- restore(): missing credential, fresh token (no network), expiring token
  (refresh through the token endpoint and persist), rejected refresh.
- revoke(): revocation request and unconditional credential deletion.
- client_jwks(): published public key set.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs

import httpx
import jwt
import pytest
import respx
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from skybridge.atproto.agent import Agent
from skybridge.atproto.dpop import generate_private_key, private_key_to_jwk
from skybridge.atproto.oauth_client import (
    HostContext,
    OAuthClient,
    build_oauth_client,
    client_jwks,
    resolve_client_metadata,
)
from skybridge.config.settings import Settings
from skybridge.core.credential_store import OAuthCredential, TokenSet
from skybridge.core.exceptions import ConfigurationError, OAuthSessionError

DID = "did:plc:alice"
ISSUER = "https://auth.example"
PDS = "https://pds.example"
TOKEN_URL = f"{ISSUER}/oauth/token"
REVOKE_URL = f"{ISSUER}/oauth/revoke"
NOW = 1_790_000_000.0


def _settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {"database_url": "postgresql+asyncpg://x/y"}
    values.update(overrides)
    return Settings(**values)


def _pem() -> str:
    return generate_private_key().private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


def _credential(expires_in: float) -> OAuthCredential:
    expires = datetime.fromtimestamp(NOW, tz=timezone.utc) + timedelta(seconds=expires_in)
    return OAuthCredential(
        did=DID,
        dpop_jwk=private_key_to_jwk(generate_private_key()),
        token_set=TokenSet(
            iss=ISSUER,
            sub=DID,
            aud=PDS,
            access_token="access-old",
            refresh_token="refresh-old",
            expires_at=expires.isoformat(),
        ),
    )


def _store(credential: OAuthCredential | None) -> MagicMock:
    store = MagicMock()
    store.get = AsyncMock(return_value=credential)
    store.set = AsyncMock()
    store.delete = AsyncMock()
    return store


def _client(
    store: MagicMock,
    http: httpx.AsyncClient,
    signing_key: ec.EllipticCurvePrivateKey | None = None,
) -> OAuthClient:
    metadata = resolve_client_metadata(HostContext(host="atlast.example"), _settings())
    return OAuthClient(
        metadata,
        store,
        http,
        signing_key=signing_key or generate_private_key(),
        key_id="k-1",
        clock=lambda: NOW,
    )


def _mock_server_metadata(with_revocation: bool = True) -> None:
    metadata = {"issuer": ISSUER, "token_endpoint": TOKEN_URL}
    if with_revocation:
        metadata["revocation_endpoint"] = REVOKE_URL
    respx.get(f"{ISSUER}/.well-known/oauth-authorization-server").mock(
        return_value=httpx.Response(200, json=metadata)
    )


# ---------------------------------------------------------------------------
# Client metadata
# ---------------------------------------------------------------------------


class TestClientMetadata:
    def test_loopback_client_is_public(self) -> None:
        metadata = resolve_client_metadata(HostContext(host="127.0.0.1:5173"), _settings())

        assert metadata.client_id.startswith("http://localhost?")
        assert metadata.redirect_uri == "http://127.0.0.1:5173/api/auth/oauth-callback"
        assert metadata.token_endpoint_auth_method == "none"
        assert not metadata.is_confidential

    def test_forwarded_host_is_confidential(self) -> None:
        host = HostContext(host="localhost:8000", forwarded_host="atlast.example")

        metadata = resolve_client_metadata(host, _settings())

        assert metadata.client_id == "https://atlast.example/api/auth/client-metadata.json"
        doc = metadata.to_document()
        assert doc["token_endpoint_auth_method"] == "private_key_jwt"
        assert doc["jwks_uri"] == "https://atlast.example/api/auth/jwks.json"
        assert doc["dpop_bound_access_tokens"] is True

    def test_confidential_client_requires_key(self) -> None:
        with pytest.raises(ConfigurationError):
            build_oauth_client(
                HostContext(host="atlast.example"),
                _settings(oauth_private_key=None),
                _store(None),
                MagicMock(),
            )

    def test_confidential_client_rejects_missing_signing_key(self) -> None:
        metadata = resolve_client_metadata(HostContext(host="atlast.example"), _settings())

        with pytest.raises(ConfigurationError):
            OAuthClient(metadata, _store(None), MagicMock(), signing_key=None)

    def test_loopback_client_needs_no_key(self) -> None:
        client = build_oauth_client(
            HostContext(host="localhost:3000"), _settings(), _store(None), MagicMock()
        )
        assert not client.metadata.is_confidential

    def test_jwks_publishes_public_key(self) -> None:
        jwks = client_jwks(_settings(oauth_private_key=_pem(), oauth_key_id="k-1"))

        (key,) = jwks["keys"]
        assert key["kid"] == "k-1"
        assert "d" not in key
        assert client_jwks(_settings(oauth_private_key=None)) == {"keys": []}


# ---------------------------------------------------------------------------
# restore()
# ---------------------------------------------------------------------------


class TestRestore:
    @pytest.mark.asyncio
    async def test_missing_credential_raises(self) -> None:
        async with httpx.AsyncClient() as http:
            with pytest.raises(OAuthSessionError):
                await _client(_store(None), http).restore(DID)

    @pytest.mark.asyncio
    @respx.mock
    async def test_fresh_token_builds_agent_without_refresh(self) -> None:
        store = _store(_credential(expires_in=3600))

        async with httpx.AsyncClient() as http:
            agent = await _client(store, http).restore(DID)

        assert isinstance(agent, Agent)
        assert agent.did == DID
        store.set.assert_not_awaited()
        assert not respx.calls

    @pytest.mark.asyncio
    @respx.mock
    async def test_expiring_token_is_refreshed_and_persisted(self) -> None:
        _mock_server_metadata()
        token_route = respx.post(TOKEN_URL).mock(
            return_value=httpx.Response(
                200,
                json={
                    "access_token": "access-new",
                    "refresh_token": "refresh-new",
                    "token_type": "DPoP",
                    "expires_in": 3600,
                    "sub": DID,
                    "scope": "atproto transition:generic",
                },
            )
        )
        store = _store(_credential(expires_in=30))

        async with httpx.AsyncClient() as http:
            await _client(store, http).restore(DID)

        form = parse_qs(token_route.calls.last.request.content.decode())
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["refresh-old"]
        assert form["client_assertion_type"] == [
            "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"
        ]
        assert "DPoP" in token_route.calls.last.request.headers

        did, refreshed = store.set.await_args.args
        assert did == DID
        assert refreshed.token_set.access_token == "access-new"
        assert refreshed.token_set.refresh_token == "refresh-new"
        assert refreshed.token_set.expires_at is not None

    @pytest.mark.asyncio
    @respx.mock
    async def test_refresh_sends_signed_client_assertion(self) -> None:
        _mock_server_metadata()
        token_route = respx.post(TOKEN_URL).mock(
            return_value=httpx.Response(
                200,
                json={"access_token": "access-new", "token_type": "DPoP", "expires_in": 3600},
            )
        )
        signing_key = generate_private_key()
        store = _store(_credential(expires_in=30))

        async with httpx.AsyncClient() as http:
            await _client(store, http, signing_key=signing_key).restore(DID)

        form = parse_qs(token_route.calls.last.request.content.decode())
        (assertion,) = form["client_assertion"]
        assert jwt.get_unverified_header(assertion)["kid"] == "k-1"
        claims = jwt.decode(
            assertion,
            signing_key.public_key(),
            algorithms=["ES256"],
            audience=ISSUER,
            options={"verify_exp": False, "verify_iat": False},
        )
        assert claims["iss"] == claims["sub"] == (
            "https://atlast.example/api/auth/client-metadata.json"
        )
        assert claims["iat"] == int(NOW)

    @pytest.mark.asyncio
    @respx.mock
    async def test_invalid_grant_deletes_credential(self) -> None:
        _mock_server_metadata()
        respx.post(TOKEN_URL).mock(
            return_value=httpx.Response(400, json={"error": "invalid_grant"})
        )
        store = _store(_credential(expires_in=-10))

        async with httpx.AsyncClient() as http:
            with pytest.raises(OAuthSessionError):
                await _client(store, http).restore(DID)

        store.delete.assert_awaited_once_with(DID)
        store.set.assert_not_awaited()


# ---------------------------------------------------------------------------
# revoke()
# ---------------------------------------------------------------------------


class TestRevoke:
    @pytest.mark.asyncio
    @respx.mock
    async def test_revokes_and_deletes(self) -> None:
        _mock_server_metadata()
        revoke_route = respx.post(REVOKE_URL).mock(return_value=httpx.Response(200))
        store = _store(_credential(expires_in=3600))

        async with httpx.AsyncClient() as http:
            await _client(store, http).revoke(DID)

        form = parse_qs(revoke_route.calls.last.request.content.decode())
        assert form["token"] == ["access-old"]
        store.delete.assert_awaited_once_with(DID)

    @pytest.mark.asyncio
    @respx.mock
    async def test_failed_revocation_still_deletes(self) -> None:
        _mock_server_metadata()
        respx.post(REVOKE_URL).mock(return_value=httpx.Response(500))
        store = _store(_credential(expires_in=3600))

        async with httpx.AsyncClient() as http:
            with pytest.raises(OAuthSessionError):
                await _client(store, http).revoke(DID)

        store.delete.assert_awaited_once_with(DID)

    @pytest.mark.asyncio
    async def test_missing_credential_only_deletes(self) -> None:
        store = _store(None)

        async with httpx.AsyncClient() as http:
            await _client(store, http).revoke(DID)

        store.delete.assert_awaited_once_with(DID)
