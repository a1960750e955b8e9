from datetime import date, datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


class RollCallRequest(BaseModel):
    """Members seen at the class; everyone else booked is recorded absent"""

    present_member_ids: List[str] = Field(default_factory=list, max_length=1000)

    @field_validator("present_member_ids")
    @classmethod
    def _dedupe(cls, value: List[str]) -> List[str]:
        seen = []
        for member_id in value:
            member_id = member_id.strip()
            if member_id and member_id not in seen:
                seen.append(member_id)
        return seen


class AttendanceRecordRead(BaseModel):
    id: int
    roll_call_id: str
    class_id: int
    class_name: str
    member_id: str
    member_name: Optional[str] = None
    trainer_id: str
    present: bool
    session_date: date
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MemberFailure(BaseModel):
    member_id: str
    error: str
    message: str


class RollCallResponse(BaseModel):
    roll_call_id: str
    class_id: int
    session_date: date
    recorded: List[AttendanceRecordRead]
    failures: List[MemberFailure]
    unknown_member_ids: List[str]


class AttendanceListResponse(BaseModel):
    class_id: int
    records: List[AttendanceRecordRead]
    total: int
