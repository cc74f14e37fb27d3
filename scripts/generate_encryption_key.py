#!/usr/bin/env python
"""Generate secrets for a new deployment.

Run from the project root::

    python scripts/generate_encryption_key.py            # TOKEN_ENCRYPTION_KEY
    python scripts/generate_encryption_key.py --oauth-key

The default prints 32 random bytes as 64 hex characters, the format
``TOKEN_ENCRYPTION_KEY`` expects.  ``--oauth-key`` additionally prints a
fresh P-256 private key in PEM form for ``OAUTH_PRIVATE_KEY``.

Exit codes:
    0: Success.
"""

from __future__ import annotations

import argparse
import os
import sys

# Ensure the src layout is on sys.path when run as a standalone script.
_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_SRC_DIR = os.path.join(os.path.dirname(_SCRIPT_DIR), "src")
if _SRC_DIR not in sys.path:
    sys.path.insert(0, _SRC_DIR)


def _oauth_key_pem() -> str:
    from cryptography.hazmat.primitives import serialization  # noqa: PLC0415

    from skybridge.atproto.dpop import generate_private_key  # noqa: PLC0415

    return generate_private_key().private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--oauth-key",
        action="store_true",
        help="Also print a P-256 PEM signing key for OAUTH_PRIVATE_KEY.",
    )
    args = parser.parse_args()

    from skybridge.core.token_vault import generate_key_hex  # noqa: PLC0415

    print("[generate_encryption_key] Add to your environment:")
    print(f"\n  TOKEN_ENCRYPTION_KEY={generate_key_hex()}\n")
    if args.oauth_key:
        print("[generate_encryption_key] OAUTH_PRIVATE_KEY (PEM):\n")
        print(_oauth_key_pem())
    print("Changing TOKEN_ENCRYPTION_KEY makes stored tokens unreadable; users must log in again.")


if __name__ == "__main__":
    main()
