from datetime import date, datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from app.staff.models.classes import ClassStatus


def _require_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        raise ValueError("Timestamp must include a timezone offset")
    return value


class GymClassBase(BaseModel):
    """Fields shared by create and read"""

    name: str = Field(..., min_length=1, max_length=255, description="Class name")
    description: Optional[str] = Field(None, max_length=2000)
    class_type: str = Field(
        "fitness", min_length=1, max_length=50, description="Category tag (yoga, cardio, ...)"
    )
    instructor_id: str = Field(..., min_length=1, max_length=128)
    instructor_name: str = Field(..., min_length=1, max_length=255)
    start_at: datetime = Field(..., description="Start, timezone-aware")
    end_at: datetime = Field(..., description="End, timezone-aware")
    location: Optional[str] = Field(None, max_length=255)
    capacity: int = Field(..., gt=0, le=1000, description="Seats available")

    model_config = ConfigDict(from_attributes=True, str_strip_whitespace=True)


class GymClassCreate(GymClassBase):
    @field_validator("start_at", "end_at")
    @classmethod
    def _aware(cls, value):
        return _require_aware(value)

    @field_validator("class_type")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        return value.lower()

    @model_validator(mode="after")
    def _check_window(self):
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


class GymClassUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged"""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    class_type: Optional[str] = Field(None, min_length=1, max_length=50)
    instructor_id: Optional[str] = Field(None, min_length=1, max_length=128)
    instructor_name: Optional[str] = Field(None, min_length=1, max_length=255)
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    location: Optional[str] = Field(None, max_length=255)
    capacity: Optional[int] = Field(None, gt=0, le=1000)

    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("start_at", "end_at")
    @classmethod
    def _aware(cls, value):
        return _require_aware(value)


class StatusTransitionRequest(BaseModel):
    status: ClassStatus = Field(..., description="Target status")
    reason: Optional[str] = Field(None, max_length=500)


class GymClassRead(GymClassBase):
    id: int
    enrolled: int
    available_spots: int
    is_full: bool
    status: ClassStatus = Field(..., description="Effective status at read time")
    created_at: datetime
    updated_at: datetime


class GymClassListResponse(BaseModel):
    classes: List[GymClassRead]
    total: int
    page: int
    size: int
    pages: int


class ClassFilters(BaseModel):
    instructor_id: Optional[str] = None
    class_type: Optional[str] = None
    status: Optional[ClassStatus] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: Optional[str] = Field(None, max_length=100)


class ClassStatistics(BaseModel):
    total_classes: int
    scheduled_classes: int
    ongoing_classes: int
    completed_classes: int
    cancelled_classes: int
    total_capacity: int
    total_enrolled: int
    fill_rate: float
    period_start: Optional[date] = None
    period_end: Optional[date] = None


class SweepResponse(BaseModel):
    started: int
    completed: int
