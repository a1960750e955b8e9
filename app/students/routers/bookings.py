"""Booking Router - reserve and cancel seats in classes"""
import math
from fastapi import APIRouter, Depends, Query, status, Request, Path
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.clock import Clock, get_clock
from app.core.database import get_session
from app.core.limits import limiter
from app.core.dependencies import get_current_principal
from app.core.exceptions import PermissionDeniedError
from app.core.principal import Principal
from app.students.crud.bookings import (
    book_class,
    cancel_booking,
    get_bookings_by_user,
)
from app.students.models.bookings import BookingStatus
from app.students.schemas.bookings import (
    BookingCreate,
    BookingRead,
    BookingListResponse,
)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def create_booking(
    request: Request,
    booking_data: BookingCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    """
    Book a seat in a class.

    Fails with CLASS_FULL when no seats are left and ALREADY_BOOKED when the
    caller already holds a booking for the class.
    """
    booking = await book_class(db, booking_data.class_id, principal, clock.now())
    return BookingRead.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=BookingRead)
@limiter.limit("30/minute")
async def cancel_class_booking(
    request: Request,
    booking_id: int = Path(..., description="Booking ID"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    """Cancel a booking and free its seat"""
    booking = await cancel_booking(db, booking_id, principal, clock.now())
    return BookingRead.model_validate(booking)


async def _list_user_bookings(
    db: AsyncSession,
    user_id: str,
    page: int,
    size: int,
    booking_status: Optional[BookingStatus],
) -> BookingListResponse:
    skip = (page - 1) * size
    bookings, total = await get_bookings_by_user(db, user_id, skip, size, booking_status)

    return BookingListResponse(
        bookings=[BookingRead.model_validate(b) for b in bookings],
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total > 0 else 0,
    )


@router.get("/me", response_model=BookingListResponse)
@limiter.limit("60/minute")
async def get_my_bookings(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    size: int = Query(20, ge=1, le=100, description="Items per page"),
    booking_status: Optional[BookingStatus] = Query(None, alias="status"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
):
    return await _list_user_bookings(db, principal.user_id, page, size, booking_status)


@router.get("/users/{user_id}", response_model=BookingListResponse)
@limiter.limit("30/minute")
async def get_user_bookings(
    request: Request,
    user_id: str = Path(..., description="Member ID"),
    page: int = Query(1, ge=1, description="Page number"),
    size: int = Query(20, ge=1, le=100, description="Items per page"),
    booking_status: Optional[BookingStatus] = Query(None, alias="status"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
):
    """Bookings of any member; admins only, or the member themself"""
    if not principal.can_act_for(user_id):
        raise PermissionDeniedError("view bookings of", "member", "admins only")

    return await _list_user_bookings(db, user_id, page, size, booking_status)
