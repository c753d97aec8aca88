"""
Health check endpoints.

Provides liveness and readiness probes for container orchestration,
plus a Prometheus scrape endpoint.
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import PlainTextResponse

from orchestral.core.config import settings
from orchestral.core.logging import get_logger
from orchestral.core.metrics import get_metrics
from orchestral.services.chat_service import ChatService, get_chat_service

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])

# Track application start time
_start_time = time.time()


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if the application is running.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "version": settings.version,
        "uptime": _format_uptime(time.time() - _start_time),
    }


@router.get("/health/live")
async def liveness_probe():
    """Liveness probe. A failure triggers a container restart."""
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_probe(service: ChatService = Depends(get_chat_service)):
    """
    Readiness probe.

    Ready once at least one knowledge source is registered. Sources whose
    availability check currently fails are reported but do not block
    readiness; the planner simply skips them.
    """
    registered = [m.id for m in service.get_available_sources()]
    available = [m.id for m in await service.get_available_sources_filtered()]

    if not registered:
        logger.error("Readiness check failed - no knowledge sources registered")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "not ready",
                "registered": registered,
                "available": available,
            },
        )

    return {
        "status": "ready",
        "registered": registered,
        "available": available,
        "sessions": service.history.get_stats(),
    }


@router.get("/metrics")
async def metrics_endpoint():
    """
    Prometheus-compatible metrics endpoint.

    Returns metrics in Prometheus text format for scraping.
    """
    return PlainTextResponse(
        content=get_metrics().export_prometheus(),
        media_type="text/plain; version=0.0.4",
    )


def _format_uptime(seconds: float) -> str:
    """Format uptime in human-readable form."""
    days = int(seconds // 86400)
    hours = int((seconds % 86400) // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    parts.append(f"{secs}s")

    return " ".join(parts)
