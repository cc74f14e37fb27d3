"""Session tables: long-lived OAuth credentials and short-lived user sessions.

``oauth_sessions.session_data`` holds either the encrypted envelope::

    {"encrypted": true, "dpopJwk": {...}, "tokenSet": "<vault blob>"}

or, when no encryption key is configured, the plaintext credential.  Only
``core/credential_store.py`` reads or writes these columns.

``user_sessions`` rows are invisible once ``expires_at`` has passed and are
deleted by the nightly cleanup task.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from skybridge.core.models.base import Base, CreatedAtMixin


class OAuthSession(Base):
    """Stored OAuth credential for one identity.

    did:          the account's decentralized identifier (primary key)
    session_data: DPoP key material plus the (possibly encrypted) token set
    updated_at:   last write, refreshed whenever the token set is rotated
    """

    __tablename__ = "oauth_sessions"

    did: Mapped[str] = mapped_column(sa.String(255), primary_key=True)
    session_data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
        onupdate=sa.text("NOW()"),
    )


class UserSession(CreatedAtMixin, Base):
    """Opaque browser session id mapped to an identity."""

    __tablename__ = "user_sessions"

    session_id: Mapped[str] = mapped_column(sa.String(255), primary_key=True)
    did: Mapped[str] = mapped_column(sa.String(255), nullable=False, index=True)
    fingerprint: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        server_default=sa.text("'{}'::jsonb"),
    )
    expires_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        index=True,
    )
