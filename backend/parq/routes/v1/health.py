# backend/parq/routes/v1/health.py
"""
Health check endpoints for monitoring and load balancer probes.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends

from ...api.dependencies import get_availability_index_dep
from ...core.availability_index import AvailabilityIndex
from ...core.config import settings
from ...core.constants import API_VERSION, BRAND_NAME
from ...schemas.main_responses import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("", response_model=HealthResponse)
def health_check(index: AvailabilityIndex = Depends(get_availability_index_dep)) -> HealthResponse:
    """
    Health check endpoint.

    Returns basic health status including service info and environment.
    """
    return HealthResponse(
        status="healthy",
        service=f"{BRAND_NAME.lower()}-booking-engine",
        version=API_VERSION,
        environment=settings.environment,
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        reservations=len(index),
    )
