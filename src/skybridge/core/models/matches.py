"""Match history table.

Rows are written by the results persistence layer; this package only
updates ``follow_status``, a JSONB map of ``{lexicon: bool}``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from skybridge.core.models.base import Base


class AtprotoMatch(Base):
    """A remote account matched to an imported source username."""

    __tablename__ = "atproto_matches"
    __table_args__ = (
        sa.UniqueConstraint(
            "source_account_id", "atproto_did", name="uq_match_source_did"
        ),
    )

    id: Mapped[int] = mapped_column(sa.BigInteger, primary_key=True, autoincrement=True)
    source_account_id: Mapped[int] = mapped_column(sa.BigInteger, nullable=False)
    atproto_did: Mapped[str] = mapped_column(sa.String(255), nullable=False, index=True)
    atproto_handle: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(sa.String(255), nullable=True)
    match_score: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    post_count: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    follower_count: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    follow_status: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        server_default=sa.text("'{}'::jsonb"),
    )
    found_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )
