"""Liveness and readiness probes.

/health reports dependency status and always answers 200 while the
process is up; "degraded" in the body means alive but impaired.  /ready
stays 200 because every dependency has an in-memory fallback.
"""

from __future__ import annotations

from fastapi import APIRouter, Response

from app.db.redis import redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    checks: dict[str, str] = {}
    overall = "ok"

    if redis_pool is not None:
        try:
            await redis_pool.ping()  # type: ignore[misc]
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "degraded"
            overall = "degraded"
    else:
        checks["redis"] = "not_configured"

    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    return Response(status_code=200)
