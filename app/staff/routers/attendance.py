from fastapi import APIRouter, Depends, Query, status, Request, Path
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.clock import Clock, get_clock
from app.core.database import get_session
from app.core.limits import limiter
from app.core.dependencies import require_staff
from app.core.exceptions import PermissionDeniedError
from app.core.principal import Principal
from app.staff.crud.attendance import record_attendance, list_attendance
from app.staff.crud.classes import get_class_by_id
from app.staff.schemas.attendance import (
    RollCallRequest,
    RollCallResponse,
    AttendanceRecordRead,
    AttendanceListResponse,
)
from app.students.crud.bookings import mark_attended
from app.students.schemas.bookings import BookingRead

router = APIRouter(prefix="/classes", tags=["Attendance"])


@router.post("/bookings/{booking_id}/attended", response_model=BookingRead)
@limiter.limit("60/minute")
async def mark_booking_attended(
    request: Request,
    booking_id: int = Path(..., description="Booking ID"),
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    """Mark a single booking as attended once the class has started"""
    booking = await mark_attended(db, booking_id, principal, clock.now())
    return BookingRead.model_validate(booking)


@router.post(
    "/{class_id}/attendance",
    response_model=RollCallResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("20/minute")
async def take_roll_call(
    request: Request,
    roll_call: RollCallRequest,
    class_id: int = Path(..., description="Class ID"),
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    """
    Record attendance for every member holding a seat.

    Members listed in `present_member_ids` are recorded present and their
    bookings marked attended; the rest are recorded absent. Per-member
    failures are returned in `failures` without affecting the others.
    """
    result = await record_attendance(
        db, class_id, principal, roll_call.present_member_ids, clock.now()
    )
    return RollCallResponse(**result)


@router.get("/{class_id}/attendance", response_model=AttendanceListResponse)
@limiter.limit("30/minute")
async def get_class_attendance(
    request: Request,
    class_id: int = Path(..., description="Class ID"),
    roll_call_id: Optional[str] = Query(None, description="Limit to one roll-call"),
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    gym_class = await get_class_by_id(db, class_id)
    if not principal.can_manage_class(gym_class):
        raise PermissionDeniedError(
            "view attendance of", "gym class", "not the instructor of this class"
        )

    records = await list_attendance(db, class_id, roll_call_id)
    return AttendanceListResponse(
        class_id=class_id,
        records=[AttendanceRecordRead.model_validate(r) for r in records],
        total=len(records),
    )
