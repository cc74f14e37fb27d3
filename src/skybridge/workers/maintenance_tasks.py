"""Celery tasks for database maintenance.

The user-session store never purges rows itself: expired sessions are
simply invisible to lookups.  This task removes them.

Database access is synchronous (psycopg2) because Celery workers do not run
an event loop.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from sqlalchemy import delete

from skybridge.core.database import get_sync_session
from skybridge.core.models.sessions import UserSession
from skybridge.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)


def purge_expired_user_sessions(now: Optional[datetime] = None) -> int:
    """Delete every ``user_sessions`` row whose ``expires_at`` has passed.

    Returns:
        Number of rows deleted.
    """
    cutoff = now or datetime.now(tz=timezone.utc)
    with get_sync_session() as session:
        result = session.execute(delete(UserSession).where(UserSession.expires_at <= cutoff))
        session.commit()
    return result.rowcount or 0


@celery_app.task(
    name="skybridge.workers.maintenance_tasks.cleanup_transient_sessions",
    bind=True,
)  # type: ignore[misc]
def cleanup_transient_sessions(self: Any) -> dict[str, int]:  # noqa: ANN401
    """Purge expired user sessions."""
    log = logger.bind(task="cleanup_transient_sessions")
    log.info("cleanup.start")
    try:
        deleted = purge_expired_user_sessions()
    except Exception as exc:
        log.error("cleanup.failed", error=str(exc))
        raise
    log.info("cleanup.complete", user_sessions_deleted=deleted)
    return {"user_sessions_deleted": deleted}
