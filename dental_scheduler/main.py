"""
Dental Scheduler API

FastAPI application entry point that ties all components together.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dental_scheduler.api.dependencies import Services
from dental_scheduler.api.routes import appointments, availability, chat, health, patients
from dental_scheduler.config import APP_VERSION, settings
from dental_scheduler.core.intelligence.intent.extractor import ClaudeIntentExtractor
from dental_scheduler.core.scheduling.errors import (
    ConflictError,
    InternalError,
    ResourceNotFound,
    SchedulingError,
    ValidationError,
)
from dental_scheduler.core.scheduling.tenants import SqlTenantResolver
from dental_scheduler.infra.claude import ClaudeClient
from dental_scheduler.infra.database import close_db, engine, init_db
from dental_scheduler.infra.notifications import RedisNotificationDispatcher
from dental_scheduler.infra.redis import RedisClient


def setup_logging() -> None:
    """Configure logging based on environment."""
    log_level = logging.DEBUG if settings.debug else logging.INFO
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


logger = logging.getLogger(__name__)

# HTTP status per scheduling error kind
ERROR_STATUS = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ResourceNotFound: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    InternalError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def build_services() -> Services:
    """Production wiring: SQL tenants, Redis notifications, Claude extractor."""
    claude_client: Optional[ClaudeClient] = None
    if settings.anthropic_api_key:
        claude_client = ClaudeClient()
    else:
        logger.warning("ANTHROPIC_API_KEY not set - intent extraction unavailable")

    return Services.build(
        tenants=SqlTenantResolver(engine),
        notifications=RedisNotificationDispatcher(),
        extractor=ClaudeIntentExtractor(claude_client) if claude_client else None,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Builds the services unless they were injected through create_app, in
    which case the database and Redis are left untouched.
    """
    # === STARTUP ===
    setup_logging()
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode")

    health.set_start_time()
    owns_services = getattr(app.state, "services", None) is None

    if owns_services:
        # Schema creation only in development - use migrations in production
        if settings.is_development:
            try:
                await init_db()
                logger.info("Database tables initialized")
            except Exception as e:
                logger.warning(f"Database init skipped: {e}")

        redis = await RedisClient.get_client()
        if redis:
            logger.info("Redis connection established")
        else:
            logger.warning("Redis unavailable - sessions fall back to memory, notifications fail")

        app.state.services = build_services()

    logger.info(f"Application ready at http://{settings.host}:{settings.port}")

    yield

    # === SHUTDOWN ===
    logger.info("Shutting down application...")

    if owns_services:
        await app.state.services.tenants.close()
        if app.state.services.extractor is not None:
            await app.state.services.extractor.close()
        await RedisClient.close()
        logger.info("Redis connection closed")

        await close_db()
        logger.info("Database connections closed")

    logger.info("Shutdown complete")


async def scheduling_exception_handler(
    request: Request,
    exc: SchedulingError,
) -> JSONResponse:
    """Map scheduling errors to HTTP statuses."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if isinstance(exc, InternalError):
        logger.error(f"Internal error on {request.url.path}: {exc.message}", exc_info=exc.cause)
    else:
        logger.info(f"{exc.code} on {request.url.path}: {exc.message}")

    return JSONResponse(status_code=status_code, content=exc.to_dict())


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "validation_error",
            "message": "Invalid request",
            "details": {"fields": jsonable_errors(exc)},
        },
    )


def jsonable_errors(exc: RequestValidationError) -> dict[str, str]:
    """Field path -> message."""
    return {
        ".".join(str(part) for part in error["loc"]): error["msg"]
        for error in exc.errors()
    }


async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.exception(f"Unhandled exception: {exc}")

    # Don't expose internal errors outside development
    detail = str(exc) if settings.is_development else "Internal server error"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "message": detail,
        },
    )


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        services: Pre-built services (tests, embedding); built at startup when omitted
    """
    app = FastAPI(
        title="Dental Scheduler API",
        description="""
    Multi-tenant dental appointment scheduling.

    ## Features
    - Conflict-safe booking, rescheduling and cancellation
    - Availability per practitioner and time window
    - Conversational booking with confirmation and human escalation

    ## Tenancy
    Every endpoint is scoped by the `X-Tenant-ID` header. The acting user is
    read from `X-User-ID`, `X-User-Role`, `X-User-Email` and `X-Cabinet-IDs`.
    """,
        version=APP_VERSION,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_timing_middleware(request: Request, call_next):
        """Log request duration in debug mode."""
        start_time = time.time()
        try:
            return await call_next(request)
        finally:
            if settings.debug:
                duration = time.time() - start_time
                logger.debug(
                    f"{request.method} {request.url.path} "
                    f"completed in {duration:.3f}s"
                )

    app.add_exception_handler(SchedulingError, scheduling_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(health.router)
    app.include_router(availability.router)
    app.include_router(appointments.router)
    app.include_router(patients.router)
    app.include_router(chat.router)

    @app.get("/", tags=["Root"])
    async def root() -> dict:
        """Basic API information."""
        return {
            "name": settings.app_name,
            "version": APP_VERSION,
            "status": "running",
            "environment": settings.app_env,
            "docs": "/docs" if settings.is_development else None,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "dental_scheduler.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
