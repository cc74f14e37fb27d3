"""Unit tests for TokenVault (AES-256-GCM token sealing).

Tests cover:
- Round-trip of strings, objects, arrays and null.
- Fresh nonce per call: two encryptions of one value differ.
- Blob shape: compact JSON with lower-case hex iv/data/tag.
- Any single altered character in iv, data or tag fails authentication.
- Malformed blobs and wrong keys raise DecryptionError.
- Key validation and the production key policy in get_token_vault().
"""

from __future__ import annotations

import json
import re

import pytest

from skybridge.config.settings import Settings
from skybridge.core.exceptions import ConfigurationError, DecryptionError
from skybridge.core.token_vault import TokenVault, generate_key_hex, get_token_vault

_TOKEN_SET = {
    "iss": "https://bsky.social",
    "sub": "did:plc:abc",
    "access_token": "at-123",
    "refresh_token": "rt-456",
    "expires_at": "2026-10-19T12:00:00+00:00",
}


def _flip_hex(char: str) -> str:
    return "1" if char == "0" else "0"


class TestRoundTrip:
    @pytest.mark.parametrize(
        "value",
        ["plain string", _TOKEN_SET, [1, "two", {"three": 3}], None],
        ids=["string", "object", "array", "null"],
    )
    def test_decrypt_returns_original_value(self, vault: TokenVault, value: object) -> None:
        assert vault.decrypt(vault.encrypt(value)) == value

    def test_same_plaintext_encrypts_differently(self, vault: TokenVault) -> None:
        first = vault.encrypt(_TOKEN_SET)
        second = vault.encrypt(_TOKEN_SET)

        assert first != second
        assert vault.decrypt(first) == vault.decrypt(second) == _TOKEN_SET

    def test_blob_is_compact_json_with_hex_fields(self, vault: TokenVault) -> None:
        blob = vault.encrypt(_TOKEN_SET)
        payload = json.loads(blob)

        assert set(payload) == {"iv", "data", "tag"}
        assert " " not in blob
        for field in ("iv", "data", "tag"):
            assert re.fullmatch(r"[0-9a-f]+", payload[field]), field
        assert len(payload["iv"]) == 32
        assert len(payload["tag"]) == 32


class TestTamperDetection:
    @pytest.mark.parametrize("field", ["iv", "data", "tag"])
    def test_every_single_character_change_is_rejected(
        self, vault: TokenVault, field: str
    ) -> None:
        payload = json.loads(vault.encrypt({"token": "abc"}))
        original = payload[field]

        for index, char in enumerate(original):
            tampered = dict(payload)
            tampered[field] = original[:index] + _flip_hex(char) + original[index + 1:]
            with pytest.raises(DecryptionError):
                vault.decrypt(json.dumps(tampered))

    def test_wrong_key_is_rejected(self, vault: TokenVault) -> None:
        blob = vault.encrypt(_TOKEN_SET)
        other = TokenVault(generate_key_hex())

        with pytest.raises(DecryptionError):
            other.decrypt(blob)

    @pytest.mark.parametrize(
        "blob",
        [
            "not json",
            "[]",
            '{"iv": "00", "data": "00"}',
            '{"iv": "zz", "data": "00", "tag": "00"}',
            '{"iv": "ABCDEF", "data": "00", "tag": "00"}',
            '{"iv": "000", "data": "00", "tag": "00"}',
            '{"iv": "00", "data": "00", "tag": "00"}',
        ],
        ids=["not-json", "not-object", "missing-tag", "non-hex", "upper-hex", "odd-length", "short-iv"],
    )
    def test_malformed_blob_raises_decryption_error(self, vault: TokenVault, blob: str) -> None:
        with pytest.raises(DecryptionError):
            vault.decrypt(blob)


class TestKeyPolicy:
    @pytest.mark.parametrize("key", ["", "abc", "g" * 64, "0" * 63, "0" * 65])
    def test_malformed_key_is_rejected(self, key: str) -> None:
        with pytest.raises(ConfigurationError):
            TokenVault(key)

    def test_generated_key_is_64_hex_characters(self) -> None:
        key = generate_key_hex()
        assert re.fullmatch(r"[0-9a-f]{64}", key)
        TokenVault(key)

    def test_missing_key_in_production_is_fatal(self) -> None:
        settings = Settings(
            database_url="postgresql+asyncpg://x/y",
            environment="production",
            token_encryption_key=None,
        )
        with pytest.raises(ConfigurationError):
            get_token_vault(settings)

    def test_missing_key_outside_production_returns_none(self) -> None:
        settings = Settings(
            database_url="postgresql+asyncpg://x/y",
            environment="development",
            token_encryption_key=None,
        )
        assert get_token_vault(settings) is None

    def test_configured_key_builds_a_vault(self, settings: Settings) -> None:
        assert isinstance(get_token_vault(settings), TokenVault)
