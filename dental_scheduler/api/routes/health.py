"""
Health Check Endpoints

Liveness and readiness for the scheduler. Readiness covers the main
database (cabinet registry and shared scheduling data) and Redis (sessions
and the notification queue); a cabinet with a dedicated database is not
checked here and surfaces its own failures as 503 on scheduling calls.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from dental_scheduler.config import APP_VERSION, settings
from dental_scheduler.infra.database import check_db_health
from dental_scheduler.infra.redis import check_redis_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

_start_time: Optional[datetime] = None

# Dependency checks, by name
CHECKS: dict[str, Callable[[], Awaitable[bool]]] = {
    "database": check_db_health,
    "redis": check_redis_health,
}


def set_start_time() -> None:
    """Called once on startup."""
    global _start_time
    _start_time = datetime.now(timezone.utc)


def get_uptime_seconds() -> Optional[float]:
    if _start_time is None:
        return None
    return (datetime.now(timezone.utc) - _start_time).total_seconds()


async def run_checks() -> dict[str, str]:
    """Run every dependency check; "ok", "failed" or "error" per name."""
    results = {}
    for name, check in CHECKS.items():
        try:
            results[name] = "ok" if await check() else "failed"
        except Exception as e:
            logger.error(f"Health check {name} raised: {e}")
            results[name] = "error"
        if results[name] != "ok":
            logger.warning(f"Health check {name}: {results[name]}")
    return results


class StatusResponse(BaseModel):
    status: str
    timestamp: datetime


class HealthResponse(StatusResponse):
    version: str


class ReadyResponse(StatusResponse):
    """Per-dependency results of the readiness check."""
    checks: dict[str, str]


class LiveResponse(StatusResponse):
    uptime_seconds: Optional[float] = None


class DetailedHealthResponse(ReadyResponse):
    """Readiness plus whether chat turns can be served."""
    chat: str
    uptime_seconds: Optional[float] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


@router.get(
    "",
    response_model=HealthResponse,
    summary="Basic health check",
    description="Returns 200 while the process serves requests. Dependencies are not checked.",
)
async def health() -> HealthResponse:
    return HealthResponse(status="healthy", timestamp=_now(), version=APP_VERSION)


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness check",
    description="Checks the main database and Redis. Returns 503 if either is unavailable.",
    responses={503: {"description": "A dependency is unavailable"}},
)
async def ready() -> ReadyResponse:
    checks = await run_checks()
    all_ok = all(value == "ok" for value in checks.values())
    response = ReadyResponse(
        status="ready" if all_ok else "not_ready",
        timestamp=_now(),
        checks=checks,
    )

    if not all_ok:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )
    return response


@router.get(
    "/live",
    response_model=LiveResponse,
    summary="Liveness check",
)
async def live() -> LiveResponse:
    return LiveResponse(status="alive", timestamp=_now(), uptime_seconds=get_uptime_seconds())


@router.get(
    "/detailed",
    response_model=DetailedHealthResponse,
    summary="Dependency and chat status",
    description="Only available in development.",
    include_in_schema=settings.is_development,
)
async def detailed(request: Request) -> DetailedHealthResponse:
    if not settings.is_development:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    checks = await run_checks()
    services = getattr(request.app.state, "services", None)
    chat_enabled = services is not None and services.orchestrator is not None

    return DetailedHealthResponse(
        status="healthy" if all(value == "ok" for value in checks.values()) else "degraded",
        timestamp=_now(),
        checks=checks,
        chat="enabled" if chat_enabled else "disabled",
        uptime_seconds=get_uptime_seconds(),
    )
