"""FastAPI application initialization."""

from contextlib import asynccontextmanager
from uuid import uuid4

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from chat_backend.api.auth import router as auth_router
from chat_backend.api.chats import router as chats_router
from chat_backend.api.middleware import CorrelationIdMiddleware
from chat_backend.api.realtime import router as realtime_router
from chat_backend.api.routes import router
from chat_backend.config import get_settings
from chat_backend.errors import AppError, RateLimitedError
from chat_backend.models.response import error_body
from chat_backend.services.logging_service import configure_logging, get_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    settings = get_settings()
    configure_logging(settings.log_level, json_output=settings.log_json)
    logger = get_logger("main")

    # Initialize database connection pool and run migrations
    try:
        from chat_backend.database import init_database, run_migrations

        await init_database()
        await run_migrations()
        logger.info("database_initialized")
    except Exception as e:
        logger.warning(
            "database_initialization_failed",
            error=str(e),
            note="Continuing without database - auth and chat endpoints will fail",
        )

    # Initialize Redis connection
    try:
        from chat_backend.services.redis_service import get_redis

        await get_redis()
        logger.info("redis_initialized")
    except Exception as e:
        logger.warning(
            "redis_initialization_failed",
            error=str(e),
            note="Continuing without Redis - rate limiting will be unavailable",
        )

    logger.info(
        "application_started",
        environment=settings.environment,
        log_level=settings.log_level,
    )

    yield

    # Shutdown
    try:
        from chat_backend.database import close_database

        await close_database()
    except Exception as e:
        logger.warning("database_close_failed", error=str(e))

    try:
        from chat_backend.services.redis_service import close_redis

        await close_redis()
    except Exception as e:
        logger.warning("redis_close_failed", error=str(e))

    logger.info("application_shutdown")


app = FastAPI(
    title="Chat Backend",
    description="Accounts, JWT sessions, chats, and live chat events",
    version="0.1.0",
    lifespan=lifespan,
)


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or str(uuid4())


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Map a classified application error to its status and the envelope."""
    correlation_id = _correlation_id(request)
    logger = structlog.get_logger()

    log = logger.warning if exc.status_code >= 500 else logger.info
    log(
        "request_failed",
        error_type=type(exc).__name__,
        status_code=exc.status_code,
        detail=exc.message,
        method=request.method,
        path=request.url.path,
    )

    headers = {"X-Correlation-Id": correlation_id}
    if isinstance(exc, RateLimitedError) and exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, exc.errors),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors with field-level details.

    Returns 400 with a short summary of the first problem and every
    problem in ``errors``.
    """
    correlation_id = _correlation_id(request)
    logger = structlog.get_logger()

    errors = [
        {
            "field": ".".join(str(loc) for loc in error.get("loc", ["unknown"])),
            "message": error.get("msg", "Validation failed"),
        }
        for error in exc.errors()
    ]
    if errors:
        detail = f"Field '{errors[0]['field']}': {errors[0]['message']}"
    else:
        detail = "Request validation failed"

    logger.warning("validation_error", detail=detail, errors=errors)

    return JSONResponse(
        status_code=400,
        content=error_body(detail, errors),
        headers={"X-Correlation-Id": correlation_id},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Wrap framework HTTP errors (404 route, 405 method) in the envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail)),
        headers={"X-Correlation-Id": _correlation_id(request)},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unclassified failure: generic 500, with detail only in development."""
    correlation_id = _correlation_id(request)
    logger = structlog.get_logger()
    logger.error(
        "unhandled_exception",
        error_type=type(exc).__name__,
        error=str(exc),
        method=request.method,
        path=request.url.path,
        exc_info=True,
    )

    extra = {}
    if get_settings().is_development:
        extra["detail"] = f"{type(exc).__name__}: {exc}"

    return JSONResponse(
        status_code=500,
        content=error_body("Internal server error", **extra),
        headers={"X-Correlation-Id": correlation_id},
    )


# CORS middleware for browser clients
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Correlation ID middleware for request tracking and observability
app.add_middleware(CorrelationIdMiddleware)

# Include API routes
app.include_router(auth_router)
app.include_router(chats_router)
app.include_router(realtime_router)
app.include_router(router)
