from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import and_, or_, func, update
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import day_bounds_utc
from app.core.database import db_operation, with_db_transaction
from app.core.exceptions import (
    NotFoundError,
    ValidationError,
    PermissionDeniedError,
    InvalidTransitionError,
)
from app.core.logging_utils import get_logger, log_business_event
from app.core.principal import Principal
from app.staff.models.classes import GymClass, ClassStatus
from app.staff.schemas.classes import (
    GymClassCreate,
    GymClassUpdate,
    GymClassRead,
    ClassFilters,
)
from app.staff.services.capacity_ledger import CapacityLedger, capacity_ledger
from app.staff.services.class_status import (
    CLOSED_STATUSES,
    can_transition,
    derive_status,
    effective_status,
)

logger = get_logger(__name__)

_REQUIRED_FIELDS = ("name", "class_type", "instructor_id", "instructor_name", "start_at", "end_at")


def to_class_read(gym_class: GymClass, now: datetime) -> GymClassRead:
    """Serialize with the clock-derived status"""
    read = GymClassRead.model_validate(gym_class)
    return read.model_copy(update={"status": effective_status(gym_class, now)})


def effective_status_clause(status: ClassStatus, now: datetime):
    """SQL predicate matching classes whose effective status is `status`"""
    if status == ClassStatus.cancelled:
        return GymClass.status == ClassStatus.cancelled.value
    if status == ClassStatus.completed:
        return or_(
            GymClass.status == ClassStatus.completed.value,
            and_(
                GymClass.status.in_([ClassStatus.scheduled.value, ClassStatus.ongoing.value]),
                GymClass.end_at <= now,
            ),
        )
    if status == ClassStatus.ongoing:
        return and_(
            GymClass.end_at > now,
            or_(
                GymClass.status == ClassStatus.ongoing.value,
                and_(
                    GymClass.status == ClassStatus.scheduled.value,
                    GymClass.start_at <= now,
                ),
            ),
        )
    return and_(
        GymClass.status == ClassStatus.scheduled.value,
        GymClass.start_at > now,
    )


def _filter_conditions(filters: Optional[ClassFilters], now: datetime) -> list:
    conditions = []
    if not filters:
        return conditions

    if filters.instructor_id:
        conditions.append(GymClass.instructor_id == filters.instructor_id)

    if filters.class_type:
        conditions.append(GymClass.class_type == filters.class_type.lower())

    if filters.status:
        conditions.append(effective_status_clause(filters.status, now))

    if filters.date_from and filters.date_to and filters.date_to < filters.date_from:
        raise ValidationError("date_to must not be before date_from")

    if filters.date_from:
        start, _ = day_bounds_utc(filters.date_from)
        conditions.append(GymClass.start_at >= start)

    if filters.date_to:
        _, end = day_bounds_utc(filters.date_to)
        conditions.append(GymClass.start_at < end)

    if filters.search and filters.search.strip():
        pattern = f"%{filters.search.strip()}%"
        conditions.append(
            or_(GymClass.name.ilike(pattern), GymClass.instructor_name.ilike(pattern))
        )

    return conditions


@db_operation
async def get_class_by_id(session: AsyncSession, class_id: int) -> GymClass:
    """Get class by ID"""
    if class_id <= 0:
        raise ValidationError("Class ID must be positive")

    result = await session.execute(select(GymClass).where(GymClass.id == class_id))
    gym_class = result.scalar_one_or_none()

    if not gym_class:
        raise NotFoundError("Gym class", str(class_id))

    return gym_class


@db_operation
async def get_classes_paginated(
    session: AsyncSession,
    now: datetime,
    skip: int = 0,
    limit: int = 20,
    filters: Optional[ClassFilters] = None,
) -> Tuple[List[GymClass], int]:
    """Paginated class list, newest first"""
    if skip < 0:
        raise ValidationError("Skip parameter must be >= 0")

    if limit <= 0 or limit > 100:
        raise ValidationError("Limit must be between 1 and 100")

    conditions = _filter_conditions(filters, now)

    base_query = select(GymClass)
    count_query = select(func.count(GymClass.id))
    if conditions:
        base_query = base_query.where(and_(*conditions))
        count_query = count_query.where(and_(*conditions))

    total = (await session.execute(count_query)).scalar() or 0

    result = await session.execute(
        base_query.order_by(GymClass.start_at.desc(), GymClass.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all(), total


async def create_class(
    session: AsyncSession, class_in: GymClassCreate, actor: Principal
) -> GymClass:
    """Create a class in `scheduled` with no seats taken"""
    if not actor.can_schedule_for(class_in.instructor_id):
        raise PermissionDeniedError(
            "create", "gym class", "trainers can only schedule their own classes"
        )

    _validate_definition(class_in.model_dump())

    async def _create_class_operation(session: AsyncSession):
        gym_class = GymClass(
            **class_in.model_dump(),
            enrolled=0,
            version=1,
            status=ClassStatus.scheduled.value,
        )
        session.add(gym_class)
        await session.flush()
        return gym_class

    gym_class = await with_db_transaction(session, _create_class_operation)
    await session.refresh(gym_class)

    log_business_event(
        "class_created",
        "gym_class",
        gym_class.id,
        {
            "instructor_id": gym_class.instructor_id,
            "capacity": gym_class.capacity,
            "start_at": gym_class.start_at.isoformat(),
            "created_by": actor.user_id,
        },
    )
    return gym_class


def _validate_definition(values: Dict[str, Any]) -> None:
    for field in _REQUIRED_FIELDS:
        value = values.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f"{field} must not be empty", {"field": field})

    capacity = values.get("capacity")
    if capacity is None or capacity <= 0:
        raise ValidationError("Capacity must be a positive integer", {"capacity": capacity})

    if values["end_at"] <= values["start_at"]:
        raise ValidationError(
            "Class must end after it starts",
            {"start_at": values["start_at"].isoformat(), "end_at": values["end_at"].isoformat()},
        )


@db_operation
async def update_class(
    session: AsyncSession,
    class_id: int,
    class_update: GymClassUpdate,
    actor: Principal,
    now: datetime,
    ledger: CapacityLedger = capacity_ledger,
) -> GymClass:
    """Edit metadata and capacity; capacity never drops below enrolled"""
    gym_class = await get_class_by_id(session, class_id)

    if not actor.can_manage_class(gym_class):
        raise PermissionDeniedError("update", "gym class", "not the instructor of this class")

    current = effective_status(gym_class, now)
    if current in CLOSED_STATUSES:
        raise InvalidTransitionError(
            "gym class", current.value, "updated", "closed classes cannot be edited"
        )

    update_data = class_update.model_dump(exclude_unset=True)

    if "instructor_id" in update_data and not actor.can_schedule_for(update_data["instructor_id"]):
        raise PermissionDeniedError("reassign", "gym class", "only admins can change the instructor")

    if "class_type" in update_data and update_data["class_type"]:
        update_data["class_type"] = update_data["class_type"].lower()

    merged = {
        "name": gym_class.name,
        "class_type": gym_class.class_type,
        "instructor_id": gym_class.instructor_id,
        "instructor_name": gym_class.instructor_name,
        "start_at": gym_class.start_at,
        "end_at": gym_class.end_at,
        "capacity": gym_class.capacity,
    }
    merged.update(update_data)
    _validate_definition(merged)

    new_capacity = update_data.pop("capacity", None)

    async def _update_class_operation(session: AsyncSession):
        if new_capacity is not None and new_capacity != gym_class.capacity:
            await ledger.resize(session, class_id, new_capacity)

        for key, value in update_data.items():
            setattr(gym_class, key, value)

    await with_db_transaction(session, _update_class_operation)
    await session.refresh(gym_class)

    log_business_event(
        "class_updated",
        "gym_class",
        class_id,
        {"fields": sorted(class_update.model_dump(exclude_unset=True)), "updated_by": actor.user_id},
    )
    return gym_class


@db_operation
async def transition_status(
    session: AsyncSession,
    class_id: int,
    target: ClassStatus,
    actor: Principal,
    now: datetime,
    ledger: CapacityLedger = capacity_ledger,
) -> GymClass:
    """Move a class forward in its lifecycle; cancelling releases every booked seat"""
    from app.students.crud.bookings import cancel_active_bookings_for_class

    gym_class = await get_class_by_id(session, class_id)

    if not actor.can_manage_class(gym_class):
        raise PermissionDeniedError(
            "change status of", "gym class", "not the instructor of this class"
        )

    target = ClassStatus(target)
    current = effective_status(gym_class, now)
    if not can_transition(current, target):
        raise InvalidTransitionError("gym class", current.value, target.value)

    async def _transition_status_operation(session: AsyncSession) -> int:
        gym_class.status = target.value
        # Flush first so no reservation can land after the cascade below
        await session.flush()

        if target != ClassStatus.cancelled:
            return 0
        return await cancel_active_bookings_for_class(session, class_id, now, ledger=ledger)

    released = await with_db_transaction(session, _transition_status_operation)
    await session.refresh(gym_class)

    log_business_event(
        f"class_{target.value}",
        "gym_class",
        class_id,
        {"from": current.value, "released_seats": released, "changed_by": actor.user_id},
    )
    return gym_class


@db_operation
async def sweep_class_statuses(session: AsyncSession, now: datetime) -> Tuple[int, int]:
    """Persist clock-driven transitions. Returns (started, completed)."""
    completed_result = await session.execute(
        update(GymClass)
        .where(
            GymClass.status.in_([ClassStatus.scheduled.value, ClassStatus.ongoing.value]),
            GymClass.end_at <= now,
        )
        .values(status=ClassStatus.completed.value)
        .execution_options(synchronize_session=False)
    )
    started_result = await session.execute(
        update(GymClass)
        .where(
            GymClass.status == ClassStatus.scheduled.value,
            GymClass.start_at <= now,
            GymClass.end_at > now,
        )
        .values(status=ClassStatus.ongoing.value)
        .execution_options(synchronize_session=False)
    )
    await session.commit()

    started, completed = started_result.rowcount, completed_result.rowcount
    if started or completed:
        logger.info(
            f"Status sweep: {started} started, {completed} completed",
            extra={"started": started, "completed": completed},
        )
    return started, completed


@db_operation
async def get_class_statistics(
    session: AsyncSession,
    now: datetime,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    instructor_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Counts per effective status plus seat usage"""
    filters = ClassFilters(date_from=date_from, date_to=date_to, instructor_id=instructor_id)
    conditions = _filter_conditions(filters, now)

    query = select(
        GymClass.status,
        GymClass.start_at,
        GymClass.end_at,
        GymClass.capacity,
        GymClass.enrolled,
    )
    if conditions:
        query = query.where(and_(*conditions))

    rows = (await session.execute(query)).all()

    counts = {status: 0 for status in ClassStatus}
    total_capacity = 0
    total_enrolled = 0
    for row in rows:
        status = derive_status(row.status, row.start_at, row.end_at, now)
        counts[status] += 1
        if status != ClassStatus.cancelled:
            total_capacity += row.capacity
            total_enrolled += row.enrolled

    fill_rate = (total_enrolled / total_capacity * 100) if total_capacity else 0

    return {
        "total_classes": len(rows),
        "scheduled_classes": counts[ClassStatus.scheduled],
        "ongoing_classes": counts[ClassStatus.ongoing],
        "completed_classes": counts[ClassStatus.completed],
        "cancelled_classes": counts[ClassStatus.cancelled],
        "total_capacity": total_capacity,
        "total_enrolled": total_enrolled,
        "fill_rate": round(fill_rate, 2),
        "period_start": date_from,
        "period_end": date_to,
    }
