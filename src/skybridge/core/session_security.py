"""Session fingerprinting for replay detection.

A fingerprint is stored alongside each user session when it is created::

    {"userAgent": "...", "ipAddress": "...", "createdAt": 1717000000000}

``createdAt`` is milliseconds since the epoch.
"""

from __future__ import annotations

import logging
import time
from typing import Any

logger = logging.getLogger(__name__)

_UNKNOWN = "unknown"


def build_fingerprint(
    user_agent: str | None,
    forwarded_for: str | None = None,
    client_ip: str | None = None,
    now: float | None = None,
) -> dict[str, Any]:
    """Build the fingerprint for a new session.

    The first address in ``X-Forwarded-For`` wins over the socket address.
    """
    ip_address = None
    if forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip() or None
    return {
        "userAgent": user_agent or _UNKNOWN,
        "ipAddress": ip_address or client_ip or _UNKNOWN,
        "createdAt": int((now if now is not None else time.time()) * 1000),
    }


def fingerprint_matches(stored: dict[str, Any], current: dict[str, Any]) -> bool:
    """Compare a stored fingerprint with the current request's.

    The user agent must match exactly.  An IP change (mobile networks, VPNs)
    is logged but accepted.
    """
    if stored.get("userAgent") != current.get("userAgent"):
        logger.warning("session_security: fingerprint mismatch, user agent changed")
        return False
    if stored.get("ipAddress") != current.get("ipAddress"):
        logger.info(
            "session_security: session ip changed",
            extra={"previous_ip": stored.get("ipAddress"), "current_ip": current.get("ipAddress")},
        )
    return True
