"""Member-facing CRUD Package"""
from .bookings import (
    get_booking_by_id,
    get_active_booking,
    book_class,
    cancel_booking,
    mark_attended,
    get_bookings_by_user,
    get_bookings_by_class,
)

from .schedule import (
    get_schedule,
    get_upcoming_for_user,
)

__all__ = [
    # Bookings
    "get_booking_by_id",
    "get_active_booking",
    "book_class",
    "cancel_booking",
    "mark_attended",
    "get_bookings_by_user",
    "get_bookings_by_class",
    # Schedule
    "get_schedule",
    "get_upcoming_for_user",
]
