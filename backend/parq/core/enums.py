# backend/parq/core/enums.py
"""
Core enums for the Parq booking engine.

Statuses that belong to a single table live next to their model; the
values here are shared across services and the API layer.
"""

from enum import Enum


class ActorRole(str, Enum):
    """Who is asking for a lifecycle change."""

    RENTER = "renter"
    HOST = "host"
    SYSTEM = "system"


class ReservationOutcome(str, Enum):
    """Labels used when recording availability index activity."""

    RESERVED = "reserved"
    CONFLICT = "conflict"
    RELEASED = "released"
    EXTENDED = "extended"
    EXTENSION_CONFLICT = "extension_conflict"
