"""Member-facing Routers Package"""
from .bookings import router as bookings_router
from .schedule import router as schedule_router

__all__ = [
    "bookings_router",
    "schedule_router",
]
