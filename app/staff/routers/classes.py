import math
from datetime import date
from fastapi import APIRouter, Depends, Query, status, Request, Path
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.clock import Clock, get_clock
from app.core.database import get_session
from app.core.limits import limiter
from app.core.dependencies import get_current_principal, require_admin, require_staff
from app.core.exceptions import PermissionDeniedError
from app.core.principal import Principal
from app.staff.models.classes import ClassStatus
from app.staff.schemas.classes import (
    GymClassCreate,
    GymClassUpdate,
    GymClassRead,
    GymClassListResponse,
    ClassFilters,
    ClassStatistics,
    StatusTransitionRequest,
    SweepResponse,
)
from app.staff.crud.classes import (
    to_class_read,
    get_class_by_id,
    get_classes_paginated,
    create_class,
    update_class,
    transition_status,
    get_class_statistics,
    sweep_class_statuses,
)
from app.students.crud.bookings import get_bookings_by_class
from app.students.models.bookings import BookingStatus
from app.students.schemas.bookings import BookingRead, ClassRosterResponse

router = APIRouter(prefix="/classes", tags=["Classes"])


@router.post("", response_model=GymClassRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_gym_class(
    request: Request,
    class_data: GymClassCreate,
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    """
    Create a new class.

    Trainers can only schedule classes they teach; admins can schedule for
    any instructor. The class starts out `scheduled` with no seats taken.
    """
    gym_class = await create_class(db, class_data, principal)
    return to_class_read(gym_class, clock.now())


@router.get("", response_model=GymClassListResponse)
@limiter.limit("60/minute")
async def list_gym_classes(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    size: int = Query(20, ge=1, le=100, description="Items per page"),
    instructor_id: Optional[str] = Query(None, description="Filter by instructor"),
    class_type: Optional[str] = Query(None, description="Filter by class type"),
    class_status: Optional[ClassStatus] = Query(
        None, alias="status", description="Filter by effective status"
    ),
    date_from: Optional[date] = Query(None, description="Filter from date"),
    date_to: Optional[date] = Query(None, description="Filter to date"),
    search: Optional[str] = Query(None, max_length=100, description="Search by name or instructor"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    """Paginated list of classes, newest first"""
    now = clock.now()
    filters = ClassFilters(
        instructor_id=instructor_id,
        class_type=class_type,
        status=class_status,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )

    skip = (page - 1) * size
    classes, total = await get_classes_paginated(db, now, skip, size, filters)

    return GymClassListResponse(
        classes=[to_class_read(c, now) for c in classes],
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total > 0 else 0,
    )


@router.get("/statistics", response_model=ClassStatistics)
@limiter.limit("30/minute")
async def get_statistics(
    request: Request,
    date_from: Optional[date] = Query(None, description="Period start"),
    date_to: Optional[date] = Query(None, description="Period end"),
    instructor_id: Optional[str] = Query(None, description="Limit to one instructor"),
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    """
    Class counts per status and seat usage.

    Trainers only see their own classes.
    """
    if not principal.is_admin:
        if instructor_id and instructor_id != principal.user_id:
            raise PermissionDeniedError(
                "view statistics of", "instructor", "trainers can only see their own classes"
            )
        instructor_id = principal.user_id

    stats = await get_class_statistics(db, clock.now(), date_from, date_to, instructor_id)
    return ClassStatistics(**stats)


@router.post("/sweep", response_model=SweepResponse)
@limiter.limit("10/minute")
async def sweep_statuses(
    request: Request,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    """Persist the statuses the clock has already moved classes into"""
    started, completed = await sweep_class_statuses(db, clock.now())
    return SweepResponse(started=started, completed=completed)


@router.get("/{class_id}", response_model=GymClassRead)
@limiter.limit("60/minute")
async def get_gym_class(
    request: Request,
    class_id: int = Path(..., description="Class ID"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    gym_class = await get_class_by_id(db, class_id)
    return to_class_read(gym_class, clock.now())


@router.patch("/{class_id}", response_model=GymClassRead)
@limiter.limit("20/minute")
async def update_gym_class(
    request: Request,
    class_update: GymClassUpdate,
    class_id: int = Path(..., description="Class ID"),
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    """
    Update class details.

    Capacity can not be lowered below the number of seats already taken.
    Completed and cancelled classes can not be edited.
    """
    now = clock.now()
    gym_class = await update_class(db, class_id, class_update, principal, now)
    return to_class_read(gym_class, now)


@router.post("/{class_id}/status", response_model=GymClassRead)
@limiter.limit("20/minute")
async def change_class_status(
    request: Request,
    transition: StatusTransitionRequest,
    class_id: int = Path(..., description="Class ID"),
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    """
    Move a class to a new status.

    Allowed: scheduled -> ongoing, ongoing -> completed, and scheduled or
    ongoing -> cancelled. Cancelling cancels every active booking.
    """
    now = clock.now()
    gym_class = await transition_status(db, class_id, transition.status, principal, now)
    return to_class_read(gym_class, now)


@router.get("/{class_id}/bookings", response_model=ClassRosterResponse)
@limiter.limit("30/minute")
async def get_class_roster(
    request: Request,
    class_id: int = Path(..., description="Class ID"),
    booking_status: Optional[BookingStatus] = Query(None, alias="status"),
    principal: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    """Bookings of a class, for its instructor"""
    gym_class = await get_class_by_id(db, class_id)

    if not principal.can_manage_class(gym_class):
        raise PermissionDeniedError(
            "view bookings of", "gym class", "not the instructor of this class"
        )

    bookings = await get_bookings_by_class(db, class_id, booking_status)
    return ClassRosterResponse(
        class_id=class_id,
        capacity=gym_class.capacity,
        enrolled=gym_class.enrolled,
        bookings=[BookingRead.model_validate(b) for b in bookings],
    )
