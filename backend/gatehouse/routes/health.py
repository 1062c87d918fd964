"""
Gatehouse — Health Check Route
================================

What:  Liveness endpoint for load balancers and container probes.
How:   Reports process uptime and version. Matches the limiter's exempt
       patterns, so probes are never throttled or counted.

Mounted twice: `/health` for infrastructure probes and `/api/v1/health`
alongside the versioned API.
"""

import time

from fastapi import APIRouter

from gatehouse import __version__
from gatehouse.schemas.errors import HealthResponse

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check() -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=__version__,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
