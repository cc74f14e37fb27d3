"""SQLAlchemy ORM models for Skybridge.

All models are imported here so that Alembic autogenerate can discover them
via ``Base.metadata`` and application code can write
``from skybridge.core.models import UserSession``.
"""

from __future__ import annotations

from skybridge.core.models.base import Base, CreatedAtMixin
from skybridge.core.models.matches import AtprotoMatch
from skybridge.core.models.sessions import OAuthSession, UserSession

__all__ = [
    "AtprotoMatch",
    "Base",
    "CreatedAtMixin",
    "OAuthSession",
    "UserSession",
]
