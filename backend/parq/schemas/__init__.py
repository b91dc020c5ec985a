"""Request and response schemas for the booking engine API."""
