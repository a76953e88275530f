"""System health endpoint — checks connectivity to the backing services."""

import time

from fastapi import APIRouter
from pydantic import BaseModel
from redis.asyncio import from_url
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from timewise.api.deps import Session
from timewise.core.config import get_settings

router = APIRouter(prefix="/system", tags=["system"])

settings = get_settings()


class ServiceHealth(BaseModel):
    status: str  # "ok" or "error"
    detail: str | None = None
    version: str | None = None
    latency_ms: int | None = None


class HealthResponse(BaseModel):
    status: str
    postgres: ServiceHealth
    redis: ServiceHealth


@router.get("/health", response_model=HealthResponse)
async def system_health(session: Session) -> HealthResponse:
    """Check connectivity to Postgres and Redis."""
    pg = await _check_postgres(session)
    rd = await _check_redis()

    overall = "ok" if all(s.status == "ok" for s in (pg, rd)) else "degraded"
    return HealthResponse(status=overall, postgres=pg, redis=rd)


async def _check_postgres(session) -> ServiceHealth:
    try:
        t0 = time.monotonic()
        await session.execute(text("SELECT 1"))
        latency = int((time.monotonic() - t0) * 1000)
    except SQLAlchemyError as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200])

    # version() only exists on PostgreSQL
    version_short = None
    if session.bind is not None and session.bind.dialect.name == "postgresql":
        result = await session.execute(text("SELECT version()"))
        version_str = result.scalar_one_or_none() or ""
        version_short = version_str.split(",")[0] if version_str else None
    return ServiceHealth(status="ok", version=version_short, latency_ms=latency)


async def _check_redis() -> ServiceHealth:
    redis = from_url(settings.redis_url, decode_responses=True)
    try:
        t0 = time.monotonic()
        pong = await redis.ping()
        latency = int((time.monotonic() - t0) * 1000)
        info = await redis.info("server")
        version = info.get("redis_version")
        return ServiceHealth(
            status="ok" if pong else "error",
            version=f"Redis {version}" if version else None,
            latency_ms=latency,
        )
    except (RedisError, OSError) as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200])
    finally:
        await redis.aclose()
