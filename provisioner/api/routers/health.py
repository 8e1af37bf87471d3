"""Health check API router."""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from provisioner.infra.metrics import get_metrics_response

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", tags=["Health"])
async def health_check():
    """Combined health check endpoint."""
    return {
        "status": "ok",
        "service": "agent-provisioner",
        "version": "1.0.0",
    }


@router.get("/health/live", tags=["Health"])
async def liveness_probe():
    """Liveness probe - indicates if the process is running."""
    return {"status": "alive"}


@router.get("/health/ready", tags=["Health"])
async def readiness_probe(request: Request):
    """Readiness probe - checks database connectivity and reports port capacity."""
    ports = request.app.state.ports
    try:
        request.app.state.store.ping()
    except Exception as e:
        logger.warning(f"Readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "not_ready", "reason": "database unavailable"})

    return {
        "status": "ready",
        "ports_available": ports.available,
        "ports_capacity": ports.capacity,
    }


@router.get("/metrics", tags=["Health"])
async def metrics():
    """Prometheus metrics endpoint."""
    return get_metrics_response()
