# backend/parq/schemas/waitlist.py
"""Waitlist request/response schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from ._strict_base import StrictModel, StrictRequestModel


class WaitlistJoin(StrictRequestModel):
    space_id: str = Field(..., min_length=1, max_length=64)
    requester_id: str = Field(..., min_length=1, max_length=64)
    start_at: datetime
    end_at: datetime
    max_price: Optional[Decimal] = Field(
        None, ge=0, description="Highest hourly rate the requester accepts"
    )


class WaitlistEntryResponse(StrictModel):
    id: str
    space_id: str
    requester_id: str
    desired_start: datetime
    desired_end: datetime
    max_price: Optional[Decimal] = None
    status: str
    join_seq: int
    passed_over: bool
    offer_count: int
    joined_at: Optional[datetime] = None
    offered_at: Optional[datetime] = None
    offer_expires_at: Optional[datetime] = None
    booking_id: Optional[str] = None
