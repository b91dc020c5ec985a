"""Application-wide constants for the Parq booking engine."""

from __future__ import annotations

BRAND_NAME = "Parq"

# Money
CURRENCY_QUANTUM = "0.01"

# Text constraints
MAX_REASON_LENGTH = 255
MAX_ISSUE_DESCRIPTION_LENGTH = 2000

# API
API_TITLE = f"{BRAND_NAME} Booking Engine API"
API_DESCRIPTION = (
    f"Booking lifecycle, availability and waitlist coordination for {BRAND_NAME} parking spaces"
)
API_VERSION = "0.1.0"
