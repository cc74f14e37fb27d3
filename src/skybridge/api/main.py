"""FastAPI application factory and entry point.

Creates the application instance, registers middleware and error handlers,
and mounts the search, follow, auth and health routers.

Usage::

    # Development server (from project root)
    uvicorn skybridge.api.main:app --reload

    # Production
    gunicorn skybridge.api.main:app -k uvicorn.workers.UvicornWorker
"""

from __future__ import annotations

import time
import uuid
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from skybridge.api.dependencies import close_http_client
from skybridge.api.limiter import limiter
from skybridge.config.settings import get_settings
from skybridge.core.exceptions import AuthenticationError, SkybridgeError
from skybridge.core.logging_config import configure_logging, request_id_var

configure_logging("INFO")

logger = structlog.get_logger(__name__)

SESSION_EXPIRED_MESSAGE = "Your session has expired. Please log in again."
GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again later."


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


async def authentication_error_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
    logger.info("auth.rejected", reason=str(exc))
    return _error(status.HTTP_401_UNAUTHORIZED, SESSION_EXPIRED_MESSAGE)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return _error(status.HTTP_400_BAD_REQUEST, message)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: log with traceback, never echo internals to the client."""
    logger.error("unhandled_error", error_type=type(exc).__name__, exc_info=exc)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, GENERIC_ERROR_MESSAGE)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build and configure the FastAPI application.

    Separated from the module-level ``app`` singleton so that tests can
    build a fresh instance with overridden dependencies.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    application = FastAPI(
        title=settings.app_name,
        description="Cross-platform follow discovery for AT Protocol accounts.",
        version="0.1.0",
        debug=settings.debug,
        redirect_slashes=False,
    )

    # ---- Middleware --------------------------------------------------------

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.middleware("http")
    async def request_logging_middleware(
        request: Request, call_next: Callable
    ) -> Response:
        """Log every request with its status and duration under a request id."""
        request_id = str(uuid.uuid4())
        request_id_var.set(request_id)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        response = None
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error("unhandled_exception", exc_info=exc)
            raise
        finally:
            elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
            status_code = getattr(response, "status_code", 500)
            log_fn = logger.warning if status_code >= 400 else logger.info
            log_fn(
                "request_complete",
                status_code=status_code,
                elapsed_ms=elapsed_ms,
            )

        response.headers["X-Request-ID"] = request_id
        return response

    # ---- Rate limiting and errors -----------------------------------------

    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    application.add_exception_handler(AuthenticationError, authentication_error_handler)
    application.add_exception_handler(RequestValidationError, validation_error_handler)
    application.add_exception_handler(SkybridgeError, unhandled_error_handler)
    application.add_exception_handler(Exception, unhandled_error_handler)

    # ---- Routers ------------------------------------------------------------

    from skybridge.api.routes import auth, follow, health, search  # noqa: PLC0415

    application.include_router(health.router)
    application.include_router(search.router, prefix="/api/search", tags=["search"])
    application.include_router(follow.router, prefix="/api/follow", tags=["follow"])
    application.include_router(auth.router, prefix="/api/auth", tags=["auth"])

    # ---- Lifecycle events -------------------------------------------------

    @application.on_event("startup")
    async def on_startup() -> None:
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            environment=settings.environment,
            log_level=settings.log_level,
        )

    @application.on_event("shutdown")
    async def on_shutdown() -> None:
        await close_http_client()
        logger.info("application_shutdown")

    return application


app = create_app()
"""The ASGI callable passed to Uvicorn / Gunicorn."""
