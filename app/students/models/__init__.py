from app.core.database import Base
from .bookings import Booking, BookingStatus, SEAT_HOLDING_STATUSES

__all__ = [
    "Base",
    "Booking",
    "BookingStatus",
    "SEAT_HOLDING_STATUSES",
]
