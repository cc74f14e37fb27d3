"""AT Protocol constants used by the protocol client adapter.

Agents talk to the account's own PDS (the ``aud`` of its token set).
``app.bsky.*`` queries are forwarded by the PDS to the Bluesky AppView
when the ``atproto-proxy`` header is present.

Key endpoints:
- ``app.bsky.actor.searchActors`` : directory search by handle / display name.
- ``app.bsky.actor.getProfiles``  : profile statistics, at most 25 actors per call.
- ``com.atproto.repo.listRecords``: cursor-paginated records of one collection.
- ``com.atproto.repo.createRecord``: write a record (e.g. a follow) to the repo.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# XRPC methods
# ---------------------------------------------------------------------------

SEARCH_ACTORS_NSID: str = "app.bsky.actor.searchActors"
GET_PROFILES_NSID: str = "app.bsky.actor.getProfiles"
LIST_RECORDS_NSID: str = "com.atproto.repo.listRecords"
CREATE_RECORD_NSID: str = "com.atproto.repo.createRecord"

APPVIEW_PROXY: str = "did:web:api.bsky.app#bsky_appview"
"""Value of the ``atproto-proxy`` header for AppView-served queries."""

# ---------------------------------------------------------------------------
# Collections and limits
# ---------------------------------------------------------------------------

DEFAULT_FOLLOW_LEXICON: str = "app.bsky.graph.follow"
"""Record collection holding an account's follow records."""

SEARCH_ACTORS_LIMIT: int = 20
"""Candidates requested per username search."""

GET_PROFILES_BATCH_SIZE: int = 25
"""Hard server-side limit on actors per ``getProfiles`` call."""

LIST_RECORDS_PAGE_SIZE: int = 100
"""Maximum page size for ``listRecords``."""

# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------

AUTH_SERVER_METADATA_PATH: str = "/.well-known/oauth-authorization-server"
TOKEN_REFRESH_MARGIN_SECONDS: int = 60
"""Refresh the access token on restore when it expires within this window."""

CLIENT_METADATA_PATH: str = "/api/auth/client-metadata.json"
JWKS_PATH: str = "/api/auth/jwks.json"
CALLBACK_PATH: str = "/api/auth/oauth-callback"

HTTP_TIMEOUT_SECONDS: float = 30.0
