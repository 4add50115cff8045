# backend/studio_booking/core/ulid_helper.py
"""ULID generation helper utilities."""

import ulid


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ulid.ULID())
