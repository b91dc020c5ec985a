# backend/parq/routes/v1/waitlist.py
"""
Waitlist routes - API v1

Endpoints:
    POST / - Join the waitlist for a space and time window
    GET /{entry_id} - Entry details
    POST /{entry_id}/claim - Claim a live offer (creates the booking)
    DELETE /{entry_id} - Leave the waitlist
    GET /spaces/{space_id} - Entries queued on a space, in join order
"""

import asyncio
import logging
from typing import List, NoReturn

from fastapi import APIRouter, Body, Depends, HTTPException, status
from fastapi.params import Path

from ...api.dependencies import get_waitlist_service
from ...core.exceptions import DomainException
from ...core.ulid_helper import ULID_PATTERN
from ...domain.time_window import TimeWindow
from ...schemas.booking import BookingResponse
from ...schemas.waitlist import WaitlistEntryResponse, WaitlistJoin
from ...services.waitlist_service import WaitlistService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["waitlist-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post("", response_model=WaitlistEntryResponse, status_code=status.HTTP_201_CREATED)
async def join_waitlist(
    payload: WaitlistJoin = Body(...),
    waitlist_service: WaitlistService = Depends(get_waitlist_service),
) -> WaitlistEntryResponse:
    try:
        window = TimeWindow(payload.start_at, payload.end_at)
        entry = await asyncio.to_thread(
            waitlist_service.join,
            payload.space_id,
            window,
            payload.max_price,
            payload.requester_id,
        )
        return WaitlistEntryResponse.model_validate(entry)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/spaces/{space_id}", response_model=List[WaitlistEntryResponse])
async def list_space_waitlist(
    space_id: str = Path(..., min_length=1, max_length=64),
    waitlist_service: WaitlistService = Depends(get_waitlist_service),
) -> List[WaitlistEntryResponse]:
    entries = await asyncio.to_thread(waitlist_service.list_space_entries, space_id)
    return [WaitlistEntryResponse.model_validate(e) for e in entries]


@router.get("/{entry_id}", response_model=WaitlistEntryResponse)
async def get_waitlist_entry(
    entry_id: str = Path(..., pattern=ULID_PATTERN),
    waitlist_service: WaitlistService = Depends(get_waitlist_service),
) -> WaitlistEntryResponse:
    try:
        entry = await asyncio.to_thread(waitlist_service.get_entry, entry_id)
        return WaitlistEntryResponse.model_validate(entry)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{entry_id}/claim", response_model=BookingResponse)
async def claim_offer(
    entry_id: str = Path(..., pattern=ULID_PATTERN),
    waitlist_service: WaitlistService = Depends(get_waitlist_service),
) -> BookingResponse:
    """Claim a waitlist offer. 409 if it expired or the window was taken."""
    try:
        booking = await asyncio.to_thread(waitlist_service.claim, entry_id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.delete("/{entry_id}", response_model=WaitlistEntryResponse)
async def leave_waitlist(
    entry_id: str = Path(..., pattern=ULID_PATTERN),
    waitlist_service: WaitlistService = Depends(get_waitlist_service),
) -> WaitlistEntryResponse:
    try:
        entry = await asyncio.to_thread(waitlist_service.leave, entry_id)
        return WaitlistEntryResponse.model_validate(entry)
    except DomainException as e:
        handle_domain_exception(e)
