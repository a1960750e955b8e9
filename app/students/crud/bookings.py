"""Booking CRUD - reserve, cancel and attend seats in gym classes"""
from datetime import datetime
from typing import List, Optional, Tuple
from sqlalchemy import and_, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import db_operation, with_db_transaction
from app.core.exceptions import (
    NotFoundError,
    ValidationError,
    PermissionDeniedError,
    AlreadyBookedError,
    AlreadyCancelledError,
    ClassFullError,
    InvalidTransitionError,
)
from app.core.logging_utils import get_logger, log_business_event
from app.core.principal import Principal
from app.staff.crud.classes import get_class_by_id
from app.staff.models.classes import GymClass, ClassStatus
from app.staff.services.capacity_ledger import (
    CapacityLedger,
    ReserveOutcome,
    capacity_ledger,
)
from app.staff.services.class_status import CLOSED_STATUSES, effective_status
from app.students.models.bookings import Booking, BookingStatus

logger = get_logger(__name__)


@db_operation
async def get_booking_by_id(session: AsyncSession, booking_id: int) -> Booking:
    if booking_id <= 0:
        raise ValidationError("Booking ID must be positive")

    result = await session.execute(select(Booking).where(Booking.id == booking_id))
    booking = result.scalar_one_or_none()

    if not booking:
        raise NotFoundError("Booking", str(booking_id))

    return booking


@db_operation
async def get_active_booking(
    session: AsyncSession, class_id: int, user_id: str
) -> Optional[Booking]:
    """The member's `booked` booking for a class, if any"""
    result = await session.execute(
        select(Booking).where(
            and_(
                Booking.class_id == class_id,
                Booking.user_id == user_id,
                Booking.status == BookingStatus.booked.value,
            )
        )
    )
    return result.scalar_one_or_none()


async def _insert_booking(
    session: AsyncSession, gym_class: GymClass, actor: Principal, now: datetime
) -> Booking:
    booking = Booking(
        class_id=gym_class.id,
        class_name=gym_class.name,
        user_id=actor.user_id,
        user_name=actor.display_name or None,
        user_email=actor.email,
        status=BookingStatus.booked.value,
        created_at=now,
    )
    session.add(booking)
    await session.flush()
    return booking


@db_operation
async def book_class(
    session: AsyncSession,
    class_id: int,
    actor: Principal,
    now: datetime,
    ledger: CapacityLedger = capacity_ledger,
) -> Booking:
    """
    Take a seat in a class for the calling member.

    The seat reservation and the booking row are committed together; if
    anything fails after the reservation the whole transaction is rolled back
    and the seat goes back to the pool.
    """
    gym_class = await get_class_by_id(session, class_id)
    capacity = gym_class.capacity

    existing = await get_active_booking(session, class_id, actor.user_id)
    if existing:
        raise AlreadyBookedError(class_id, actor.user_id, existing.id)

    async def _book_class_operation(session: AsyncSession):
        outcome = await ledger.try_reserve(session, class_id, now)
        if outcome == ReserveOutcome.full:
            raise ClassFullError(class_id, capacity)

        try:
            return await _insert_booking(session, gym_class, actor, now)
        except IntegrityError as e:
            # Lost the race against a concurrent booking by the same member
            raise AlreadyBookedError(class_id, actor.user_id) from e

    booking = await with_db_transaction(session, _book_class_operation)
    await session.refresh(booking)

    log_business_event(
        "class_booked",
        "booking",
        booking.id,
        {"class_id": class_id, "user_id": actor.user_id},
    )
    return booking


async def _claim_booking(
    session: AsyncSession, booking_id: int, target: BookingStatus, **values
) -> bool:
    """Move a booking out of `booked`; False if someone else got there first"""
    result = await session.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status == BookingStatus.booked.value,
        )
        .values(status=target.value, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _check_still_booked(booking: Booking, target: BookingStatus) -> None:
    if booking.status == BookingStatus.cancelled.value:
        raise AlreadyCancelledError(booking.id)
    if booking.status != BookingStatus.booked.value:
        raise InvalidTransitionError("booking", booking.status, target.value)


@db_operation
async def cancel_booking(
    session: AsyncSession,
    booking_id: int,
    actor: Principal,
    now: datetime,
    ledger: CapacityLedger = capacity_ledger,
) -> Booking:
    """Cancel a booking and give its seat back"""
    booking = await get_booking_by_id(session, booking_id)
    gym_class = await get_class_by_id(session, booking.class_id)

    if not (actor.can_act_for(booking.user_id) or actor.can_manage_class(gym_class)):
        raise PermissionDeniedError("cancel", "booking", "not your booking")

    _check_still_booked(booking, BookingStatus.cancelled)

    class_status = effective_status(gym_class, now)
    if class_status in CLOSED_STATUSES:
        raise InvalidTransitionError(
            "booking", booking.status, BookingStatus.cancelled.value,
            f"class is {class_status.value}",
        )

    class_id = booking.class_id

    async def _cancel_booking_operation(session: AsyncSession):
        if not await _claim_booking(
            session, booking_id, BookingStatus.cancelled, cancelled_at=now
        ):
            raise AlreadyCancelledError(booking_id)
        await ledger.release(session, class_id)

    await with_db_transaction(session, _cancel_booking_operation)
    await session.refresh(booking)

    log_business_event(
        "booking_cancelled",
        "booking",
        booking_id,
        {"class_id": class_id, "user_id": booking.user_id, "cancelled_by": actor.user_id},
    )
    return booking


async def transition_to_attended(
    session: AsyncSession, booking: Booking, gym_class: GymClass, now: datetime
) -> None:
    """Flip a booked booking to attended; the seat stays taken. Does not commit."""
    _check_still_booked(booking, BookingStatus.attended)

    if effective_status(gym_class, now) == ClassStatus.cancelled:
        raise InvalidTransitionError(
            "booking", booking.status, BookingStatus.attended.value, "class was cancelled"
        )

    if now < gym_class.start_at:
        raise InvalidTransitionError(
            "booking", booking.status, BookingStatus.attended.value, "class has not started yet"
        )

    if not await _claim_booking(
        session, booking.id, BookingStatus.attended, attended_at=now
    ):
        raise AlreadyCancelledError(booking.id)


@db_operation
async def mark_attended(
    session: AsyncSession,
    booking_id: int,
    actor: Principal,
    now: datetime,
) -> Booking:
    """Instructor confirms a member showed up"""
    booking = await get_booking_by_id(session, booking_id)
    gym_class = await get_class_by_id(session, booking.class_id)

    if not actor.can_manage_class(gym_class):
        raise PermissionDeniedError(
            "mark attendance for", "booking", "only the instructor or an admin can"
        )

    await with_db_transaction(session, transition_to_attended, booking, gym_class, now)
    await session.refresh(booking)

    log_business_event(
        "booking_attended",
        "booking",
        booking_id,
        {"class_id": booking.class_id, "user_id": booking.user_id, "marked_by": actor.user_id},
    )
    return booking


async def cancel_active_bookings_for_class(
    session: AsyncSession,
    class_id: int,
    now: datetime,
    ledger: CapacityLedger = capacity_ledger,
) -> int:
    """Cancel every booked booking of a class, releasing each seat. Does not commit."""
    result = await session.execute(
        select(Booking.id).where(
            and_(
                Booking.class_id == class_id,
                Booking.status == BookingStatus.booked.value,
            )
        )
    )
    booking_ids = result.scalars().all()

    released = 0
    for booking_id in booking_ids:
        if await _claim_booking(
            session, booking_id, BookingStatus.cancelled, cancelled_at=now
        ):
            await ledger.release(session, class_id)
            released += 1

    logger.info(
        f"Cancelled {released} bookings of class {class_id}",
        extra={"class_id": class_id, "released": released},
    )
    return released


@db_operation
async def get_bookings_by_user(
    session: AsyncSession,
    user_id: str,
    skip: int = 0,
    limit: int = 20,
    status: Optional[BookingStatus] = None,
) -> Tuple[List[Booking], int]:
    """A member's bookings, most recent first"""
    if skip < 0:
        raise ValidationError("Skip parameter must be >= 0")

    if limit <= 0 or limit > 100:
        raise ValidationError("Limit must be between 1 and 100")

    conditions = [Booking.user_id == user_id]
    if status:
        conditions.append(Booking.status == BookingStatus(status).value)

    total = (
        await session.execute(select(func.count(Booking.id)).where(and_(*conditions)))
    ).scalar() or 0

    result = await session.execute(
        select(Booking)
        .where(and_(*conditions))
        .order_by(Booking.created_at.desc(), Booking.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all(), total


@db_operation
async def get_bookings_by_class(
    session: AsyncSession,
    class_id: int,
    status: Optional[BookingStatus] = None,
) -> List[Booking]:
    """Every booking of a class in booking order"""
    conditions = [Booking.class_id == class_id]
    if status:
        conditions.append(Booking.status == BookingStatus(status).value)

    result = await session.execute(
        select(Booking).where(and_(*conditions)).order_by(Booking.created_at, Booking.id)
    )
    return result.scalars().all()
