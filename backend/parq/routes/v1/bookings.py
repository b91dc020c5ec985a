# backend/parq/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to the booking engine services.

Endpoints:
    POST / - Create a booking for a space and time window
    GET /?host_id= - Bookings across a host's spaces, newest first
    GET /renters/{renter_id} - A renter's bookings, newest first
    GET /{booking_id} - Booking details
    POST /{booking_id}/confirm-payment - Record the payment signal
    POST /{booking_id}/cancel - Cancel a booking
    GET /{booking_id}/extension-quote - Price and eligibility of an extension
    POST /{booking_id}/extend - Extend an active booking
    GET /{booking_id}/issues - Issue reports for a booking
    POST /{booking_id}/issues - Report an issue
    GET /{booking_id}/issues/evaluation - Advisory refund for the latest report
    POST /{booking_id}/issues/resolve - Resolve the open issue report
"""

import asyncio
from decimal import Decimal
import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.params import Path

from ...api.dependencies import (
    get_booking_service,
    get_extension_service,
    get_issue_service,
)
from ...core.exceptions import DomainException
from ...core.ulid_helper import ULID_PATTERN
from ...domain.time_window import TimeWindow
from ...schemas.booking import (
    BookingCancel,
    BookingCreate,
    BookingExtend,
    BookingResponse,
    CancellationResponse,
    ExtensionQuoteResponse,
    IssueReportCreate,
    IssueReportResponse,
    IssueResolutionResponse,
    IssueResolve,
    RefundResponse,
)
from ...services.booking_service import BookingService
from ...services.extension_service import ExtensionService
from ...services.issue_service import IssueService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["bookings-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate = Body(...),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """
    Reserve a space for a time window.

    409 means the window is taken; the client can join the waitlist instead.
    """
    try:
        window = TimeWindow(payload.start_at, payload.end_at)
        booking = await asyncio.to_thread(
            booking_service.create,
            payload.space_id,
            payload.renter_id,
            window,
            payload.expected_price,
            payment_confirmed=payload.payment_confirmed,
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("", response_model=List[BookingResponse])
async def list_host_bookings(
    host_id: str = Query(..., min_length=1, max_length=64),
    limit: Optional[int] = Query(None, ge=1),
    booking_service: BookingService = Depends(get_booking_service),
) -> List[BookingResponse]:
    bookings = await asyncio.to_thread(booking_service.list_host_bookings, host_id, limit)
    return [BookingResponse.model_validate(b) for b in bookings]


@router.get("/renters/{renter_id}", response_model=List[BookingResponse])
async def list_renter_bookings(
    renter_id: str = Path(..., min_length=1, max_length=64),
    limit: Optional[int] = Query(None, ge=1),
    booking_service: BookingService = Depends(get_booking_service),
) -> List[BookingResponse]:
    bookings = await asyncio.to_thread(booking_service.list_renter_bookings, renter_id, limit)
    return [BookingResponse.model_validate(b) for b in bookings]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str = Path(..., pattern=ULID_PATTERN),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(booking_service.get_booking, booking_id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/confirm-payment", response_model=BookingResponse)
async def confirm_payment(
    booking_id: str = Path(..., pattern=ULID_PATTERN),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(booking_service.confirm_payment, booking_id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/cancel", response_model=CancellationResponse)
async def cancel_booking(
    booking_id: str = Path(..., pattern=ULID_PATTERN),
    payload: Optional[BookingCancel] = Body(None),
    booking_service: BookingService = Depends(get_booking_service),
) -> CancellationResponse:
    payload = payload or BookingCancel()
    try:
        result = await asyncio.to_thread(
            booking_service.cancel, booking_id, payload.actor, payload.reason
        )
        return CancellationResponse(
            booking=BookingResponse.model_validate(result.booking),
            refund=RefundResponse(**result.refund.to_payload()),
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{booking_id}/extension-quote", response_model=ExtensionQuoteResponse)
async def get_extension_quote(
    booking_id: str = Path(..., pattern=ULID_PATTERN),
    hours: Decimal = Query(Decimal("1"), gt=0),
    extension_service: ExtensionService = Depends(get_extension_service),
) -> ExtensionQuoteResponse:
    try:
        quote = await asyncio.to_thread(extension_service.quote, booking_id, hours)
        return ExtensionQuoteResponse(**quote.to_dict())
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/extend", response_model=BookingResponse)
async def extend_booking(
    booking_id: str = Path(..., pattern=ULID_PATTERN),
    payload: BookingExtend = Body(...),
    extension_service: ExtensionService = Depends(get_extension_service),
) -> BookingResponse:
    """Extend an active booking. 409 if the extra time is already reserved."""
    try:
        booking = await asyncio.to_thread(
            extension_service.extend, booking_id, payload.additional_hours
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{booking_id}/issues", response_model=List[IssueReportResponse])
async def list_issue_reports(
    booking_id: str = Path(..., pattern=ULID_PATTERN),
    issue_service: IssueService = Depends(get_issue_service),
) -> List[IssueReportResponse]:
    try:
        reports = await asyncio.to_thread(issue_service.list_reports, booking_id)
        return [IssueReportResponse.model_validate(r) for r in reports]
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{booking_id}/issues",
    response_model=IssueReportResponse,
    status_code=status.HTTP_201_CREATED,
)
async def report_issue(
    booking_id: str = Path(..., pattern=ULID_PATTERN),
    payload: IssueReportCreate = Body(...),
    issue_service: IssueService = Depends(get_issue_service),
) -> IssueReportResponse:
    try:
        report = await asyncio.to_thread(
            issue_service.report, booking_id, payload.issue_type, payload.description
        )
        return IssueReportResponse.model_validate(report)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{booking_id}/issues/evaluation", response_model=RefundResponse)
async def evaluate_issue(
    booking_id: str = Path(..., pattern=ULID_PATTERN),
    issue_service: IssueService = Depends(get_issue_service),
) -> RefundResponse:
    try:
        result = await asyncio.to_thread(issue_service.evaluate, booking_id)
        return RefundResponse(**result.to_payload())
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/issues/resolve", response_model=IssueResolutionResponse)
async def resolve_issue(
    booking_id: str = Path(..., pattern=ULID_PATTERN),
    payload: IssueResolve = Body(...),
    issue_service: IssueService = Depends(get_issue_service),
) -> IssueResolutionResponse:
    try:
        result = await asyncio.to_thread(
            issue_service.resolve,
            booking_id,
            payload.resolution,
            refund_amount=payload.refund_amount,
        )
        return IssueResolutionResponse(
            booking=BookingResponse.model_validate(result.booking),
            report=IssueReportResponse.model_validate(result.report),
            refund_amount=result.refund_amount,
        )
    except DomainException as e:
        handle_domain_exception(e)
