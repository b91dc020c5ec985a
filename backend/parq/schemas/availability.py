# backend/parq/schemas/availability.py
"""Availability check schemas."""

from datetime import datetime
from typing import List

from pydantic import Field

from ._strict_base import StrictModel, StrictRequestModel


class AvailabilityCheckRequest(StrictRequestModel):
    space_id: str = Field(..., min_length=1, max_length=64)
    start_at: datetime
    end_at: datetime


class ReservationResponse(StrictModel):
    booking_id: str
    start: datetime
    end: datetime


class AvailabilityCheckResponse(StrictModel):
    space_id: str
    available: bool
    conflicts: List[ReservationResponse] = []
