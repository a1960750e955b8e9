"""Schedule Router - what's on today, tomorrow and this week"""
from datetime import date
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from app.core.clock import Clock, get_clock
from app.core.database import get_session
from app.core.limits import limiter
from app.core.dependencies import get_current_principal
from app.core.principal import Principal
from app.staff.models.classes import ClassStatus
from app.students.crud.schedule import get_schedule, get_upcoming_for_user
from app.students.schemas.schedule import (
    ScheduleDay,
    ScheduleEntry,
    ScheduleFilters,
    ScheduleResponse,
)

router = APIRouter(prefix="/schedule", tags=["Schedule"])


@router.get("", response_model=ScheduleResponse)
@limiter.limit("60/minute")
async def get_class_schedule(
    request: Request,
    day: ScheduleDay = Query(ScheduleDay.today, description="today, tomorrow, week or all"),
    date_from: Optional[date] = Query(None, description="Explicit window start (overrides day)"),
    date_to: Optional[date] = Query(None, description="Explicit window end (overrides day)"),
    class_type: Optional[str] = Query(None, description="Filter by class type"),
    instructor_id: Optional[str] = Query(None, description="Filter by instructor"),
    class_status: Optional[ClassStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, max_length=100, description="Search by name or instructor"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    """
    Classes in a day window, sorted by start time.

    Each entry carries the seats left and whether the caller is booked.
    """
    filters = ScheduleFilters(
        day=day,
        date_from=date_from,
        date_to=date_to,
        class_type=class_type,
        instructor_id=instructor_id,
        status=class_status,
        search=search,
    )

    entries, window_start, window_end = await get_schedule(db, filters, principal, clock.now())

    return ScheduleResponse(
        entries=entries,
        total=len(entries),
        date_from=window_start,
        date_to=window_end,
    )


@router.get("/upcoming", response_model=List[ScheduleEntry])
@limiter.limit("60/minute")
async def get_upcoming_classes(
    request: Request,
    limit: int = Query(10, ge=1, le=50, description="Number of classes to return"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    """The caller's booked classes that have not finished yet"""
    return await get_upcoming_for_user(db, principal.user_id, clock.now(), limit)
