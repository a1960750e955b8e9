from app.core.database import Base
from .classes import GymClass, ClassStatus
from .attendance import AttendanceRecord

__all__ = [
    "Base",
    "GymClass",
    "ClassStatus",
    "AttendanceRecord",
]
