"""Celery Beat periodic task schedule.

+------------------------------+---------------+-------------------------------+
| Task name                    | Schedule      | Purpose                       |
+==============================+===============+===============================+
| cleanup_transient_sessions   | 02:00 UTC     | Delete expired user sessions. |
+------------------------------+---------------+-------------------------------+
"""

from __future__ import annotations

from celery.schedules import crontab

beat_schedule: dict[str, dict] = {  # type: ignore[type-arg]
    "cleanup_transient_sessions": {
        "task": "skybridge.workers.maintenance_tasks.cleanup_transient_sessions",
        "schedule": crontab(hour=2, minute=0),
        "options": {
            "queue": "celery",
            "expires": 3_600,
        },
    },
}
