"""Celery application for Skybridge background maintenance.

Usage (starting a worker)::

    celery -A skybridge.workers.celery_app worker --loglevel=info

Usage (starting the Beat scheduler)::

    celery -A skybridge.workers.celery_app beat --loglevel=info
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import worker_process_init
from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

load_dotenv()

from skybridge.config.settings import get_settings  # noqa: E402

settings = get_settings()

#: The global Celery application instance.
celery_app = Celery(
    "skybridge",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["skybridge.workers.maintenance_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=86_400,
    task_soft_time_limit=300,
    task_time_limit=600,
    beat_schedule_filename="celerybeat-schedule",
)

from skybridge.workers.beat_schedule import beat_schedule  # noqa: E402

celery_app.conf.beat_schedule = beat_schedule


@worker_process_init.connect
def _dispose_engines_on_fork(**kwargs: object) -> None:  # noqa: ARG001
    """Drop pooled connections inherited from the parent after ``fork()``."""
    from skybridge.core import database as _db  # noqa: PLC0415

    if _db._get_sync_engine.cache_info().currsize:
        _db._get_sync_engine().dispose(close=False)
    _logger.debug("celery: worker process initialised")
