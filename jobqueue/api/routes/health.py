"""
Health check routes.
"""

import logging
from datetime import datetime

from fastapi import APIRouter
from fastapi.responses import Response

from jobqueue import __version__
from jobqueue.api.dependencies import JobQueueDep
from jobqueue.types.api import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


async def _database_reachable(job_queue) -> bool:
    try:
        return await job_queue.check_database()
    except Exception as e:
        logger.warning(f"Database check failed: {e}")
        return False


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the API and database connection.",
)
async def health_check(job_queue: JobQueueDep) -> HealthResponse:
    """
    Perform a health check.

    Checks database connectivity and returns service status.

    Returns:
        HealthResponse with service status.
    """
    db_status = "healthy" if await _database_reachable(job_queue) else "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        version=__version__,
        database=db_status,
        timestamp=datetime.utcnow(),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check(job_queue: JobQueueDep) -> dict:
    """Kubernetes readiness probe endpoint."""
    return {"ready": await _database_reachable(job_queue)}


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    """Kubernetes liveness probe endpoint."""
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics(job_queue: JobQueueDep) -> Response:
    """
    Expose Prometheus metrics.

    Returns:
        Prometheus-formatted metrics.
    """
    metrics_collector = job_queue.metrics
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
