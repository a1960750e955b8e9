from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict

from app.students.models.bookings import BookingStatus


class BookingCreate(BaseModel):
    class_id: int = Field(..., gt=0, description="Class to book a seat in")


class BookingRead(BaseModel):
    id: int
    class_id: int
    class_name: str
    user_id: str
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    status: BookingStatus
    created_at: datetime
    cancelled_at: Optional[datetime] = None
    attended_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class BookingListResponse(BaseModel):
    bookings: List[BookingRead]
    total: int
    page: int
    size: int
    pages: int


class ClassRosterResponse(BaseModel):
    """Bookings of one class as seen by its instructor"""

    class_id: int
    capacity: int
    enrolled: int
    bookings: List[BookingRead]
