"""Structured logging configuration using structlog.

Call ``configure_logging()`` once at process start (the FastAPI app factory
and the Celery worker both do).  Modules then log through either API:

    import logging
    logger = logging.getLogger(__name__)
    logger.warning("follow_status: mirror failed", extra={"did": did})

    import structlog
    logger = structlog.get_logger(__name__)
    logger.info("batch_follow.done", succeeded=6, failed=1)

The request-logging middleware in ``api/main.py`` sets :data:`request_id_var`
so every record emitted while serving a request carries its id.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, WrappedLogger

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
"""Per-request ID propagated from the HTTP middleware to log processors."""


# ---------------------------------------------------------------------------
# Custom processors
# ---------------------------------------------------------------------------


_SECRET_SUBSTRINGS: frozenset[str] = frozenset({
    "token",
    "secret",
    "password",
    "authorization",
    "dpop",
    "jwk",
    "refresh",
    "private_key",
    "encryption_key",
    "session_data",
    "cookie",
})
"""Lower-cased substrings marking event-dict keys whose values are redacted.

``token`` covers access tokens, refresh tokens, and whole token sets.
"""

_REDACTED = "[REDACTED]"


def _is_secret(key: str) -> bool:
    key_lower = key.lower()
    return any(secret in key_lower for secret in _SECRET_SUBSTRINGS)


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Replace values of secret-bearing keys with a redaction marker.

    Top-level keys and the keys of nested ``dict`` values (one level deep,
    e.g. ``headers={...}``) are both checked.
    """
    for key in list(event_dict.keys()):
        if _is_secret(key):
            event_dict[key] = _REDACTED
            continue
        val = event_dict[key]
        if isinstance(val, dict):
            event_dict[key] = {
                k: (_REDACTED if isinstance(k, str) and _is_secret(k) else v)
                for k, v in val.items()
            }
    return event_dict


def _inject_request_id(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Add the current request id unless a bound context already set one."""
    rid = request_id_var.get()
    if rid is not None and "request_id" not in event_dict:
        event_dict["request_id"] = rid
    return event_dict


# ---------------------------------------------------------------------------
# Public configuration entry-point
# ---------------------------------------------------------------------------


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog and stdlib logging to share one processor chain.

    Non-DEBUG levels render newline-delimited JSON; DEBUG renders with
    structlog's ``ConsoleRenderer``.  Every record carries ``timestamp``,
    ``level``, ``logger``, ``event`` and, inside a request, ``request_id``.

    Safe to call repeatedly: existing root handlers are replaced.

    Args:
        log_level: Logging verbosity string, case-insensitive.
    """
    level_upper = log_level.upper()
    numeric_level = getattr(logging, level_upper, logging.INFO)
    is_development = level_upper == "DEBUG"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _inject_request_id,
        _redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if is_development:
        final_renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer(
            colors=True,
        )
    else:
        final_renderer = structlog.processors.JSONRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[structlog.stdlib.ExtraAdder(), *shared_processors],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            final_renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    # httpx logs every request URL at INFO, including XRPC query strings.
    if not is_development:
        for noisy_logger in ("uvicorn.access", "httpx", "httpcore"):
            logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    structlog.configure(
        processors=shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
