"""SQLAlchemy declarative base shared by all ORM models.

Provides:
- Base: the DeclarativeBase subclass all models inherit from
- CreatedAtMixin: a created_at column with a server-side default
"""

from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Shared declarative base for all Skybridge models."""


class CreatedAtMixin:
    """Adds a created_at column filled by the database on INSERT."""

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )
