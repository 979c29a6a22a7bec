"""Expose Prometheus metrics and a liveness probe."""

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["monitoring"])


@router.get("/metrics")
async def metrics() -> Response:
    """Return the Prometheus metrics registry."""

    payload = generate_latest()
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


@router.get("/health")
async def health(request: Request) -> dict:
    bus = getattr(request.app.state, "event_bus", None)
    return {
        "status": "ok",
        "engine": getattr(request.app.state, "assessment_engine", None) is not None,
        "event_bus": bool(bus and bus.is_running),
    }
