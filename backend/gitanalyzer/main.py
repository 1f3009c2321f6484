"""GitAnalyzer backend: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager

# configure_structlog MUST run before the other package imports: structlog
# caches the processor chain on first use.
from gitanalyzer.core.config import get_settings as _get_settings_early
from gitanalyzer.core.logging import configure_structlog

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog  # noqa: E402
from fastapi import FastAPI, HTTPException, Request  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402
from redis.exceptions import RedisError  # noqa: E402

from gitanalyzer.api.routes import api_router  # noqa: E402
from gitanalyzer.core.config import get_settings  # noqa: E402
from gitanalyzer.core.exceptions import (  # noqa: E402
    GitAnalyzerError,
    QuotaExceededError,
    RateLimitExceededError,
)
from gitanalyzer.db import close_db, close_redis, init_db, init_redis  # noqa: E402
from gitanalyzer.db.seed import seed_plans  # noqa: E402
from gitanalyzer.middleware.correlation import get_correlation_id, setup_correlation_middleware  # noqa: E402

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # SIGTERM flips this so /api/health returns 503 while connections drain
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    await init_db()
    logger.info("db_initialized")

    # Redis only backs the plan-generation rate limiter, which fails open
    try:
        await init_redis()
        logger.info("redis_initialized")
    except (RedisError, OSError) as e:
        logger.warning("redis_unavailable", error=str(e), error_type=type(e).__name__)

    await seed_plans()
    logger.info("plans_seeded")

    yield

    logger.info("shutdown_begin")
    await close_redis()
    await close_db()
    logger.info("shutdown_complete")


def _request_context(request: Request) -> dict:
    return {
        "correlation_id": get_correlation_id(),
        "path": request.url.path,
        "method": request.method,
        "user_id": getattr(request.state, "user_id", None),
    }


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Global exception handler for HTTPException with debug_id tracking.

    Logs errors server-side with full context, returns sanitized response to client.
    """
    debug_id = str(uuid.uuid4())
    logger.error(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        detail=exc.detail,
        **_request_context(request),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "debug_id": debug_id},
        headers=getattr(exc, "headers", None),
    )


async def gitanalyzer_error_handler(request: Request, exc: GitAnalyzerError) -> JSONResponse:
    """Map domain errors to their HTTP status with a machine-readable ``code``."""
    debug_id = str(uuid.uuid4())
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "domain_error",
        status_code=exc.status_code,
        code=exc.code,
        debug_id=debug_id,
        detail=exc.message,
        **_request_context(request),
    )

    content = {"detail": exc.message, "code": exc.code, "debug_id": debug_id}
    if isinstance(exc, QuotaExceededError):
        content["suggested_depth"] = exc.suggested_depth
        content["upgrade_url"] = exc.upgrade_url
    elif isinstance(exc, RateLimitExceededError):
        content["retry_after"] = exc.retry_after

    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers or None)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors with debug_id tracking.

    Logs full exception with traceback, returns generic 500 to client.
    """
    debug_id = str(uuid.uuid4())
    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
        **_request_context(request),
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="AI analysis of GitHub repositories",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(dict.fromkeys([settings.frontend_url, *settings.cors_origins])),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(GitAnalyzerError)(gitanalyzer_error_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "gitanalyzer.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
