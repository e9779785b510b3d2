"""
Health endpoints.

  GET /health             -- Liveness plus backend health summary
  GET /health/generation  -- Probe both text-generation backends now
"""

import logging
import time

from fastapi import APIRouter, Request

from ..models.responses import HealthResponse

logger = logging.getLogger(__name__)
router = APIRouter()


def _response(request: Request) -> HealthResponse:
    machine = request.app.state.machine
    start_time = getattr(request.app.state, "start_time", time.time())
    report = machine.generator.health_report()
    return HealthResponse(
        status="healthy" if report["overall"] != "poor" else "degraded",
        uptime_seconds=round(time.time() - start_time, 1),
        active_sessions=sum(1 for s in machine.sessions() if s.active),
        generation=report,
    )


@router.get("/health", response_model=HealthResponse)
async def liveness(request: Request) -> HealthResponse:
    """Returns 200 while the process runs; backend health is informational."""
    return _response(request)


@router.get("/health/generation", response_model=HealthResponse)
async def probe_generation(request: Request) -> HealthResponse:
    """Run one health probe against every backend, then report."""
    await request.app.state.machine.generator.check_health()
    return _response(request)
