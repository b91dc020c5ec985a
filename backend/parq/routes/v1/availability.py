# backend/parq/routes/v1/availability.py
"""
Availability routes - API v1

Endpoints:
    POST /check - Is a window free on a space (answered from the availability index)
"""

import logging
from typing import NoReturn

from fastapi import APIRouter, Body, Depends, HTTPException, status

from ...api.dependencies import get_availability_index_dep
from ...core.availability_index import AvailabilityIndex
from ...core.exceptions import DomainException
from ...domain.time_window import TimeWindow
from ...schemas.availability import (
    AvailabilityCheckRequest,
    AvailabilityCheckResponse,
    ReservationResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["availability-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post("/check", response_model=AvailabilityCheckResponse)
def check_availability(
    payload: AvailabilityCheckRequest = Body(...),
    index: AvailabilityIndex = Depends(get_availability_index_dep),
) -> AvailabilityCheckResponse:
    """Advisory only: the window can still be taken before a booking is made."""
    try:
        window = TimeWindow(payload.start_at, payload.end_at)
    except DomainException as e:
        handle_domain_exception(e)
    conflicts = index.conflicts(payload.space_id, window)
    return AvailabilityCheckResponse(
        space_id=payload.space_id,
        available=not conflicts,
        conflicts=[
            ReservationResponse(booking_id=c.booking_id, start=c.start, end=c.end)
            for c in conflicts
        ],
    )
