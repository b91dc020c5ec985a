# backend/parq/api/dependencies/__init__.py
"""FastAPI dependencies: the request session, collaborators and services."""

from ...database import get_db
from .services import (
    get_availability_index_dep,
    get_booking_engine,
    get_booking_policy,
    get_booking_service,
    get_catalog_client,
    get_extension_service,
    get_issue_service,
    get_notifier,
    get_waitlist_service,
)

__all__ = [
    # Database
    "get_db",
    # Collaborators
    "get_availability_index_dep",
    "get_booking_policy",
    "get_catalog_client",
    "get_notifier",
    # Services
    "get_booking_engine",
    "get_booking_service",
    "get_extension_service",
    "get_issue_service",
    "get_waitlist_service",
]
