"""Authenticated encryption of OAuth token sets at rest.

Token sets are JSON-serialised and sealed with AES-256-GCM under a random
128-bit nonce.  The stored blob is itself a compact JSON string::

    {"iv": "<32 hex>", "data": "<hex ciphertext>", "tag": "<32 hex>"}

All three fields are lower-case hex.  Encrypting the same plaintext twice
yields two different blobs because the nonce is fresh on every call.

The key is configured through ``TOKEN_ENCRYPTION_KEY`` (64 hex characters).
Use :func:`get_token_vault` rather than constructing :class:`TokenVault`
directly so that the production / non-production key policy is applied.
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from skybridge.config.settings import Settings, get_settings
from skybridge.core.exceptions import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

_NONCE_BYTES = 16
_TAG_BYTES = 16
_KEY_HEX_RE = re.compile(r"^[0-9a-fA-F]{64}$")
_HEX_RE = re.compile(r"^[0-9a-f]*$")


class TokenVault:
    """AES-256-GCM sealer for arbitrary JSON-serialisable values.

    Args:
        key_hex: 64-character hexadecimal key (32 bytes).

    Raises:
        ConfigurationError: If *key_hex* is not exactly 64 hex characters.
    """

    def __init__(self, key_hex: str) -> None:
        if not _KEY_HEX_RE.match(key_hex or ""):
            raise ConfigurationError(
                "TOKEN_ENCRYPTION_KEY must be 64 hex characters (32 bytes)"
            )
        self._aesgcm = AESGCM(bytes.fromhex(key_hex))

    def encrypt(self, value: Any) -> str:
        """Seal *value* and return the serialised blob."""
        plaintext = json.dumps(value, separators=(",", ":")).encode("utf-8")
        nonce = os.urandom(_NONCE_BYTES)
        sealed = self._aesgcm.encrypt(nonce, plaintext, None)
        ciphertext, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
        return json.dumps(
            {"iv": nonce.hex(), "data": ciphertext.hex(), "tag": tag.hex()},
            separators=(",", ":"),
        )

    def decrypt(self, blob: str) -> Any:
        """Open a blob produced by :meth:`encrypt`.

        Raises:
            DecryptionError: If the blob is malformed, was sealed under a
                different key, or has been modified in any way.
        """
        nonce, ciphertext, tag = _parse_blob(blob)
        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise DecryptionError("Token blob failed authentication") from exc
        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise DecryptionError("Decrypted token is not valid JSON") from exc


def _parse_blob(blob: str) -> tuple[bytes, bytes, bytes]:
    try:
        payload = json.loads(blob)
    except (TypeError, ValueError) as exc:
        raise DecryptionError("Token blob is not valid JSON") from exc

    if not isinstance(payload, dict):
        raise DecryptionError("Token blob must be a JSON object")

    fields: list[bytes] = []
    for name in ("iv", "data", "tag"):
        raw = payload.get(name)
        if not isinstance(raw, str) or len(raw) % 2 or not _HEX_RE.match(raw):
            raise DecryptionError(f"Token blob field {name!r} is missing or not hex")
        fields.append(bytes.fromhex(raw))

    nonce, ciphertext, tag = fields
    if len(nonce) != _NONCE_BYTES or len(tag) != _TAG_BYTES:
        raise DecryptionError("Token blob has an invalid nonce or tag length")
    return nonce, ciphertext, tag


def generate_key_hex() -> str:
    """Return a fresh random key suitable for ``TOKEN_ENCRYPTION_KEY``."""
    return os.urandom(32).hex()


def get_token_vault(settings: Settings | None = None) -> TokenVault | None:
    """Build the vault for the configured key, applying the key policy.

    A missing key raises in production.  Elsewhere it logs a warning and
    returns ``None``; callers then store token sets unencrypted.  A key
    that is present but malformed is always an error.

    Raises:
        ConfigurationError: If the key is malformed, or missing in production.
    """
    settings = settings or get_settings()
    key = settings.token_encryption_key
    if not key:
        if settings.is_production:
            raise ConfigurationError(
                "TOKEN_ENCRYPTION_KEY is required in production"
            )
        logger.warning(
            "token_vault: TOKEN_ENCRYPTION_KEY not set; token sets will be "
            "stored unencrypted",
        )
        return None
    return TokenVault(key)
