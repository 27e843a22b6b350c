"""Service status endpoints: health, version and process metrics."""

from __future__ import annotations

import resource
import time

import fastapi
from typing_extensions import TypedDict

from app.core import config

router = fastapi.APIRouter(tags=["status"])

_STARTED_AT = time.monotonic()


class MemoryUsage(TypedDict):
    max_rss_kb: int


class MetricsResponse(TypedDict):
    uptime: float
    memory: MemoryUsage


@router.get("/health")
def health() -> dict[str, str]:
    """Health check endpoint for monitoring and load balancers."""
    return {"status": "ok"}


@router.get("/version")
def version(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> dict[str, str]:
    """Report the configured application version."""
    return {"version": settings.app_version}


@router.get("/metrics")
def metrics() -> MetricsResponse:
    """Report process uptime in seconds and peak resident memory."""
    usage = resource.getrusage(resource.RUSAGE_SELF)
    return MetricsResponse(
        uptime=time.monotonic() - _STARTED_AT,
        memory=MemoryUsage(max_rss_kb=int(usage.ru_maxrss)),
    )
