"""Initial schema: OAuth sessions, user sessions and the match history.

1. oauth_sessions   long-lived credentials keyed by DID
2. user_sessions    opaque browser sessions with an expiry
3. atproto_matches  matched remote accounts and their follow status

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "oauth_sessions",
        sa.Column("did", sa.String(255), primary_key=True),
        sa.Column("session_data", JSONB, nullable=False),
        sa.Column(
            "updated_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
    )

    op.create_table(
        "user_sessions",
        sa.Column("session_id", sa.String(255), primary_key=True),
        sa.Column("did", sa.String(255), nullable=False),
        sa.Column(
            "fingerprint",
            JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "created_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("expires_at", TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_user_sessions_did", "user_sessions", ["did"])
    op.create_index("ix_user_sessions_expires_at", "user_sessions", ["expires_at"])

    op.create_table(
        "atproto_matches",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("source_account_id", sa.BigInteger, nullable=False),
        sa.Column("atproto_did", sa.String(255), nullable=False),
        sa.Column("atproto_handle", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("match_score", sa.Integer, nullable=False),
        sa.Column("post_count", sa.Integer, nullable=True),
        sa.Column("follower_count", sa.Integer, nullable=True),
        sa.Column(
            "follow_status",
            JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "found_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.UniqueConstraint("source_account_id", "atproto_did", name="uq_match_source_did"),
    )
    op.create_index("ix_atproto_matches_atproto_did", "atproto_matches", ["atproto_did"])


def downgrade() -> None:
    op.drop_index("ix_atproto_matches_atproto_did", table_name="atproto_matches")
    op.drop_table("atproto_matches")
    op.drop_index("ix_user_sessions_expires_at", table_name="user_sessions")
    op.drop_index("ix_user_sessions_did", table_name="user_sessions")
    op.drop_table("user_sessions")
    op.drop_table("oauth_sessions")
