"""Schedule CRUD - today / tomorrow / upcoming views of the class list"""
from typing import Dict, List, Optional, Tuple
from datetime import date, datetime, timedelta
from sqlalchemy import and_, or_
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import day_bounds_utc, gym_local_date
from app.core.database import db_operation
from app.core.exceptions import ValidationError
from app.core.principal import Principal
from app.staff.crud.classes import effective_status_clause
from app.staff.models.classes import GymClass, ClassStatus
from app.staff.services.class_status import effective_status
from app.students.models.bookings import Booking, SEAT_HOLDING_STATUSES
from app.students.schemas.schedule import ScheduleDay, ScheduleEntry, ScheduleFilters


def resolve_window(
    filters: ScheduleFilters, now: datetime
) -> Tuple[Optional[date], Optional[date]]:
    """Inclusive local date range the filters ask for, or (None, None) for all"""
    if filters.date_from or filters.date_to:
        date_from = filters.date_from or filters.date_to
        date_to = filters.date_to or filters.date_from
        if date_to < date_from:
            raise ValidationError("date_to must not be before date_from")
        return date_from, date_to

    today = gym_local_date(now)
    if filters.day == ScheduleDay.today:
        return today, today
    if filters.day == ScheduleDay.tomorrow:
        tomorrow = today + timedelta(days=1)
        return tomorrow, tomorrow
    if filters.day == ScheduleDay.week:
        return today, today + timedelta(days=6)
    return None, None


def _to_entry(
    gym_class: GymClass, now: datetime, booking_id: Optional[int] = None
) -> ScheduleEntry:
    return ScheduleEntry(
        id=gym_class.id,
        name=gym_class.name,
        description=gym_class.description,
        class_type=gym_class.class_type,
        instructor_id=gym_class.instructor_id,
        instructor_name=gym_class.instructor_name,
        start_at=gym_class.start_at,
        end_at=gym_class.end_at,
        location=gym_class.location,
        capacity=gym_class.capacity,
        enrolled=gym_class.enrolled,
        available_spots=gym_class.available_spots,
        is_full=gym_class.is_full,
        status=effective_status(gym_class, now),
        is_booked=booking_id is not None,
        booking_id=booking_id,
    )


async def _viewer_bookings(
    session: AsyncSession, user_id: str, class_ids: List[int]
) -> Dict[int, int]:
    """class_id -> booking_id for the viewer's seat-holding bookings"""
    if not class_ids:
        return {}

    result = await session.execute(
        select(Booking.class_id, Booking.id).where(
            and_(
                Booking.user_id == user_id,
                Booking.class_id.in_(class_ids),
                Booking.status.in_(SEAT_HOLDING_STATUSES),
            )
        )
    )
    return {class_id: booking_id for class_id, booking_id in result.all()}


@db_operation
async def get_schedule(
    session: AsyncSession,
    filters: ScheduleFilters,
    viewer: Principal,
    now: datetime,
    limit: int = 200,
) -> Tuple[List[ScheduleEntry], Optional[date], Optional[date]]:
    """Classes in the requested window, by start time, annotated for the viewer"""
    if limit <= 0 or limit > 500:
        raise ValidationError("Limit must be between 1 and 500")

    date_from, date_to = resolve_window(filters, now)

    conditions = []
    if date_from:
        start, _ = day_bounds_utc(date_from)
        _, end = day_bounds_utc(date_to)
        conditions.append(and_(GymClass.start_at >= start, GymClass.start_at < end))

    if filters.class_type:
        conditions.append(GymClass.class_type == filters.class_type.lower())

    if filters.instructor_id:
        conditions.append(GymClass.instructor_id == filters.instructor_id)

    if filters.status:
        conditions.append(effective_status_clause(filters.status, now))

    if filters.search and filters.search.strip():
        pattern = f"%{filters.search.strip()}%"
        conditions.append(
            or_(GymClass.name.ilike(pattern), GymClass.instructor_name.ilike(pattern))
        )

    query = select(GymClass)
    if conditions:
        query = query.where(and_(*conditions))

    result = await session.execute(
        query.order_by(GymClass.start_at.asc(), GymClass.id.asc()).limit(limit)
    )
    classes = result.scalars().all()

    booked = await _viewer_bookings(session, viewer.user_id, [c.id for c in classes])

    entries = [_to_entry(c, now, booked.get(c.id)) for c in classes]
    return entries, date_from, date_to


@db_operation
async def get_upcoming_for_user(
    session: AsyncSession,
    user_id: str,
    now: datetime,
    limit: int = 10,
) -> List[ScheduleEntry]:
    """Classes the member holds a seat in that have not finished yet"""
    if limit <= 0 or limit > 50:
        raise ValidationError("Limit must be between 1 and 50")

    result = await session.execute(
        select(GymClass, Booking.id)
        .join(Booking, Booking.class_id == GymClass.id)
        .where(
            and_(
                Booking.user_id == user_id,
                Booking.status.in_(SEAT_HOLDING_STATUSES),
                GymClass.status.in_([ClassStatus.scheduled.value, ClassStatus.ongoing.value]),
                GymClass.end_at > now,
            )
        )
        .order_by(GymClass.start_at.asc(), GymClass.id.asc())
        .limit(limit)
    )

    return [_to_entry(gym_class, now, booking_id) for gym_class, booking_id in result.all()]
