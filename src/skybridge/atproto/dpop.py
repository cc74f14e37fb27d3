"""ES256 key handling, JWT signing and DPoP proofs.

AT Protocol OAuth binds every access token to a per-session P-256 key
(DPoP, RFC 9449).  The key travels with the stored credential as a JWK;
each request carries a fresh proof JWT signed with it.  Confidential
clients additionally sign ``private_key_jwt`` client assertions with the
application's own P-256 key.

JWK conversion and JWS signing go through PyJWT.
"""

from __future__ import annotations

import hashlib
import time
import uuid
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jwt.algorithms import ECAlgorithm
from jwt.exceptions import InvalidKeyError
from jwt.utils import base64url_encode

from skybridge.core.exceptions import ConfigurationError

ALGORITHM = "ES256"

# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def generate_private_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


def private_key_to_jwk(key: ec.EllipticCurvePrivateKey) -> dict[str, Any]:
    """Serialise a P-256 private key as a JWK (including ``d``)."""
    return ECAlgorithm.to_jwk(key, as_dict=True)


def private_key_from_jwk(jwk: dict[str, Any]) -> ec.EllipticCurvePrivateKey:
    """Load a P-256 private key from its JWK form.

    Raises:
        ValueError: If the JWK is not an EC P-256 private key.
    """
    if jwk.get("kty") != "EC" or jwk.get("crv") != "P-256" or "d" not in jwk:
        raise ValueError("DPoP key must be an EC P-256 private JWK")
    try:
        key = ECAlgorithm.from_jwk(jwk)
    except InvalidKeyError as exc:
        raise ValueError(f"DPoP key is malformed: {exc}") from exc
    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise ValueError("DPoP key must be an EC P-256 private JWK")
    return key


def public_jwk(key: ec.EllipticCurvePrivateKey, kid: str | None = None) -> dict[str, Any]:
    jwk = ECAlgorithm.to_jwk(key.public_key(), as_dict=True)
    if kid is not None:
        jwk["kid"] = kid
        jwk["alg"] = ALGORITHM
        jwk["use"] = "sig"
    return jwk


def load_private_key_pem(pem: str) -> ec.EllipticCurvePrivateKey:
    """Load the client signing key from PEM text.

    Escaped newlines (``\\n``) are accepted since PEM values are often pasted
    into single-line environment variables.

    Raises:
        ConfigurationError: If the PEM is unreadable or not a P-256 key.
    """
    if "\n" not in pem and "\\n" in pem:
        pem = pem.replace("\\n", "\n")
    try:
        key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    except ValueError as exc:
        raise ConfigurationError("OAUTH_PRIVATE_KEY is not a valid PEM key") from exc
    if not isinstance(key, ec.EllipticCurvePrivateKey) or key.curve.name != "secp256r1":
        raise ConfigurationError("OAUTH_PRIVATE_KEY must be an EC P-256 key")
    return key


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


def create_client_assertion(
    key: ec.EllipticCurvePrivateKey,
    client_id: str,
    audience: str,
    key_id: str,
    now: float | None = None,
    lifetime: int = 60,
) -> str:
    """Sign a ``private_key_jwt`` client assertion for the token endpoint."""
    issued_at = int(now if now is not None else time.time())
    claims = {
        "iss": client_id,
        "sub": client_id,
        "aud": audience,
        "jti": str(uuid.uuid4()),
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    return jwt.encode(claims, key, algorithm=ALGORITHM, headers={"kid": key_id})


def _htu(url: str) -> str:
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def create_dpop_proof(
    key: ec.EllipticCurvePrivateKey,
    method: str,
    url: str,
    nonce: str | None = None,
    access_token: str | None = None,
    now: float | None = None,
) -> str:
    """Build a DPoP proof JWT for one HTTP request.

    Args:
        key: The session's DPoP private key.
        method: HTTP method of the request.
        url: Target URL; query and fragment are stripped for ``htu``.
        nonce: Server-provided ``DPoP-Nonce`` for this origin, if any.
        access_token: When set, ``ath`` binds the proof to this token.
        now: Issue time override (seconds since the epoch).
    """
    claims: dict[str, Any] = {
        "jti": str(uuid.uuid4()),
        "htm": method.upper(),
        "htu": _htu(url),
        "iat": int(now if now is not None else time.time()),
    }
    if nonce:
        claims["nonce"] = nonce
    if access_token:
        digest = hashlib.sha256(access_token.encode("ascii")).digest()
        claims["ath"] = base64url_encode(digest).decode("ascii")
    headers = {"typ": "dpop+jwt", "jwk": public_jwk(key)}
    return jwt.encode(claims, key, algorithm=ALGORITHM, headers=headers)
