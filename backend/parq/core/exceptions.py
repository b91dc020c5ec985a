# backend/parq/core/exceptions.py
"""
Domain-specific exceptions for the Parq booking engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


def _format_window(start: datetime, end: datetime) -> str:
    return f"[{start.isoformat()}, {end.isoformat()})"


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


class RepositoryException(Exception):
    """Raised when repository operations fail."""


# Specific business exceptions


class InvalidWindowException(ValidationException):
    """Raised when a requested time window is malformed or out of policy."""


class PriceMismatchException(ValidationException):
    """Raised when the client's expected price disagrees with the server price."""

    def __init__(self, space_id: str, expected: Any, actual: Any) -> None:
        super().__init__(
            f"Price for space {space_id} is {actual}, client expected {expected}",
            details={"space_id": space_id, "expected": str(expected), "actual": str(actual)},
        )


class SpaceUnavailableException(ConflictException):
    """Raised when a window overlaps an existing reservation on the space."""

    def __init__(
        self,
        space_id: str,
        start: datetime,
        end: datetime,
        conflicts: Optional[Iterable[Dict[str, Any]]] = None,
    ) -> None:
        conflict_list = list(conflicts or [])
        super().__init__(
            f"Space {space_id} is not available for {_format_window(start, end)}",
            details={
                "space_id": space_id,
                "start": start.isoformat(),
                "end": end.isoformat(),
                "conflicts": conflict_list,
            },
        )
        self.space_id = space_id
        self.conflicts = conflict_list


class ExtensionConflictException(ConflictException):
    """Raised when an extension would run into another reservation."""

    def __init__(
        self,
        space_id: str,
        start: datetime,
        end: datetime,
        conflicts: Optional[Iterable[Dict[str, Any]]] = None,
    ) -> None:
        conflict_list = list(conflicts or [])
        super().__init__(
            f"Cannot extend on space {space_id}: {_format_window(start, end)} is already reserved",
            details={
                "space_id": space_id,
                "start": start.isoformat(),
                "end": end.isoformat(),
                "conflicts": conflict_list,
            },
        )
        self.space_id = space_id
        self.conflicts = conflict_list


class OfferNotFoundException(NotFoundException):
    """Raised when a waitlist entry has no live offer to claim."""


class OfferExpiredException(ConflictException):
    """Raised when a waitlist offer is claimed after its deadline."""


class InvalidTransitionException(BusinessRuleException):
    """Raised when a booking status change is not in the transition table."""

    def __init__(self, booking_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Booking {booking_id} cannot move from {current} to {target}",
            details={"booking_id": booking_id, "current": current, "target": target},
        )


class NotCancellableException(BusinessRuleException):
    """Raised when a booking cannot be cancelled by the requesting actor."""


class NotExtendableException(BusinessRuleException):
    """Raised when a booking is outside its extension window."""


class NotReportableException(BusinessRuleException):
    """Raised when an issue cannot be reported (or resolved) for a booking."""


class ConsistencyFault(ServiceException):
    """Raised when the availability index disagrees with the booking table."""
