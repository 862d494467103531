"""Metrics endpoint for the realtime gateway and voice broker counters."""

from fastapi import APIRouter, Response

from app.monitoring.registry import TEXT_CONTENT_TYPE, registry

router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=Response, include_in_schema=False)
def export_metrics() -> Response:
    """Render every registered series in the Prometheus text format."""

    return Response(
        content=registry.render(),
        media_type=TEXT_CONTENT_TYPE,
        headers={"Cache-Control": "no-store"},
    )
