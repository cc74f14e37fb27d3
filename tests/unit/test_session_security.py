"""Unit tests for session fingerprinting."""

from __future__ import annotations

from skybridge.core.session_security import build_fingerprint, fingerprint_matches


class TestBuildFingerprint:
    def test_forwarded_for_first_hop_wins(self) -> None:
        fp = build_fingerprint("UA/1.0", forwarded_for="203.0.113.7, 10.0.0.1", client_ip="10.0.0.2", now=1.5)

        assert fp == {"userAgent": "UA/1.0", "ipAddress": "203.0.113.7", "createdAt": 1500}

    def test_falls_back_to_client_ip_then_unknown(self) -> None:
        assert build_fingerprint("UA", client_ip="10.0.0.2")["ipAddress"] == "10.0.0.2"
        fp = build_fingerprint(None)
        assert fp["ipAddress"] == "unknown"
        assert fp["userAgent"] == "unknown"


class TestFingerprintMatches:
    def test_user_agent_change_is_rejected(self) -> None:
        stored = build_fingerprint("UA/1.0", client_ip="1.1.1.1")
        current = build_fingerprint("UA/2.0", client_ip="1.1.1.1")
        assert not fingerprint_matches(stored, current)

    def test_ip_change_is_accepted(self) -> None:
        stored = build_fingerprint("UA/1.0", client_ip="1.1.1.1")
        current = build_fingerprint("UA/1.0", client_ip="2.2.2.2")
        assert fingerprint_matches(stored, current)
