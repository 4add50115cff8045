# backend/studio_booking/routes/__init__.py
"""HTTP routers. Prefixes are applied when mounting in main.py."""

from . import (
    bookings as bookings,
    prometheus as prometheus,
    sessions as sessions,
    waitlist as waitlist,
)
