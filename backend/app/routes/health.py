"""
DocDigest Backend: Health Check Route
=======================================

What:  GET /health for load balancers and monitoring.
Why:   A load balancer should stop routing to an instance whose database
       is gone, but keep it when only the summarizer is degraded.
How:   SELECT 1 against the database, then the summarizer's circuit state or
       its lightweight health_check (lists models, costs no tokens).

Status levels:
    healthy    database and summarizer reachable
    degraded   database fine, summarizer unreachable or circuit open
    unhealthy  database unreachable
"""

import logging
import time

from fastapi import APIRouter
from sqlalchemy import text

from app import __version__
from app.database import engine
from app.schemas.common import HealthResponse
from app.services.gemini_service import CircuitState, gemini_summarizer

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Database and summarizer status. Never rate limited and never logged per request.",
)
async def health_check() -> HealthResponse:
    db_status = "connected"
    summarizer_status = "available"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    if gemini_summarizer.circuit_breaker.state == CircuitState.OPEN:
        summarizer_status = "circuit_open"
    elif not await gemini_summarizer.health_check():
        summarizer_status = "unavailable"

    if summarizer_status != "available" and overall == "healthy":
        overall = "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        summarizer=summarizer_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
