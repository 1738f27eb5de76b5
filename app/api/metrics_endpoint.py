"""Prometheus scrape endpoint (text exposition format, not JSON).

Exposes request metrics alongside the grading counters: attempts graded
by result, grading failures by kind, and gradebook exports served.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
