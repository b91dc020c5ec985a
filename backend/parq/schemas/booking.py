# backend/parq/schemas/booking.py
"""Booking request/response schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from ..core.constants import MAX_ISSUE_DESCRIPTION_LENGTH, MAX_REASON_LENGTH
from ..core.enums import ActorRole
from ..models.issue_report import IssueResolution, IssueType
from ._strict_base import StrictModel, StrictRequestModel


class BookingCreate(StrictRequestModel):
    space_id: str = Field(..., min_length=1, max_length=64)
    renter_id: str = Field(..., min_length=1, max_length=64)
    start_at: datetime
    end_at: datetime
    expected_price: Decimal = Field(..., ge=0, description="Total price shown to the renter")
    payment_confirmed: bool = True


class BookingCancel(StrictRequestModel):
    actor: ActorRole = ActorRole.RENTER
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)


class BookingExtend(StrictRequestModel):
    additional_hours: Decimal = Field(
        ..., gt=0, description="Hours to add to the end time; fractions allowed"
    )


class BookingResponse(StrictModel):
    id: str
    space_id: str
    renter_id: str
    host_id: str
    start_at: datetime
    end_at: datetime
    original_end_at: Optional[datetime] = None
    status: str
    price_per_hour: Decimal
    total_price: Decimal
    extension_price: Decimal
    extended_count: int
    refund_amount: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None


class RefundResponse(StrictModel):
    eligible: bool
    amount: Decimal
    resolution: Optional[str] = None
    reason: Optional[str] = None
    policy_basis: str
    requires_review: bool


class CancellationResponse(StrictModel):
    booking: BookingResponse
    refund: RefundResponse


class ExtensionQuoteResponse(StrictModel):
    booking_id: str
    additional_hours: Decimal
    eligible: bool
    current_end: datetime
    new_end: datetime
    additional_cost: Decimal
    reason: Optional[str] = None


class IssueReportCreate(StrictRequestModel):
    issue_type: IssueType
    description: str = Field(..., max_length=MAX_ISSUE_DESCRIPTION_LENGTH)


class IssueResolve(StrictRequestModel):
    resolution: IssueResolution
    refund_amount: Optional[Decimal] = Field(None, ge=0)


class IssueReportResponse(StrictModel):
    id: str
    booking_id: str
    issue_type: str
    description: str
    reported_at: datetime
    resolution: str
    resolved_at: Optional[datetime] = None
    refund_amount: Optional[Decimal] = None


class IssueResolutionResponse(StrictModel):
    booking: BookingResponse
    report: IssueReportResponse
    refund_amount: Decimal
