"""Row identifiers: 26-character Crockford base32 ULID strings."""

import ulid

ULID_LENGTH = 26

# Crockford alphabet, no I, L, O or U.
ULID_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def generate_ulid() -> str:
    """New time-ordered identifier; sorts by creation time."""
    return str(ulid.ULID())
