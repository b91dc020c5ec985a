"""
Prometheus metrics endpoint for monitoring infrastructure.

Public, unauthenticated scrape endpoint following standard Prometheus
practice. Exposes the metrics recorded by ``measure_operation``, the
availability index and the waitlist.
"""

from fastapi import APIRouter, Response

from ..monitoring.prometheus_metrics import prometheus_metrics

router = APIRouter()


@router.get("/metrics/prometheus", include_in_schema=False)
def prometheus_scrape() -> Response:
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type(),
    )
