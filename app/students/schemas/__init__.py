"""Member-facing Schemas Package"""
from .bookings import (
    BookingCreate,
    BookingRead,
    BookingListResponse,
    ClassRosterResponse,
)

from .schedule import (
    ScheduleDay,
    ScheduleFilters,
    ScheduleEntry,
    ScheduleResponse,
)

__all__ = [
    # Bookings
    "BookingCreate",
    "BookingRead",
    "BookingListResponse",
    "ClassRosterResponse",
    # Schedule
    "ScheduleDay",
    "ScheduleFilters",
    "ScheduleEntry",
    "ScheduleResponse",
]
