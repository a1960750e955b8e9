"""Schedule Schemas - classes as a member sees them"""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime
from enum import Enum

from app.staff.models.classes import ClassStatus


class ScheduleDay(str, Enum):
    """Preset day windows, in the gym's timezone"""
    today = "today"
    tomorrow = "tomorrow"
    week = "week"
    all = "all"


class ScheduleFilters(BaseModel):
    day: ScheduleDay = ScheduleDay.today
    # Explicit dates override `day`
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    class_type: Optional[str] = None
    instructor_id: Optional[str] = None
    status: Optional[ClassStatus] = None
    search: Optional[str] = Field(None, max_length=100)


class ScheduleEntry(BaseModel):
    """One class in the schedule, annotated for the viewer"""
    id: int
    name: str
    description: Optional[str] = None
    class_type: str

    # Instructor
    instructor_id: str
    instructor_name: str

    # When and where
    start_at: datetime
    end_at: datetime
    location: Optional[str] = None

    # Seats
    capacity: int
    enrolled: int
    available_spots: int
    is_full: bool

    status: ClassStatus
    is_booked: bool = False
    booking_id: Optional[int] = None


class ScheduleResponse(BaseModel):
    entries: List[ScheduleEntry]
    total: int
    date_from: Optional[date] = None
    date_to: Optional[date] = None
