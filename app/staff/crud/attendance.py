"""Roll-call recording for gym classes"""
import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import gym_local_date
from app.core.database import db_operation
from app.core.exceptions import (
    BaseAppException,
    PermissionDeniedError,
    InvalidTransitionError,
)
from app.core.logging_utils import get_logger, log_business_event
from app.core.principal import Principal
from app.staff.crud.classes import get_class_by_id
from app.staff.models.attendance import AttendanceRecord
from app.staff.models.classes import GymClass, ClassStatus
from app.staff.schemas.attendance import AttendanceRecordRead
from app.staff.services.class_status import effective_status
from app.students.crud.bookings import transition_to_attended
from app.students.models.bookings import Booking, BookingStatus, SEAT_HOLDING_STATUSES

logger = get_logger(__name__)


async def _write_attendance_record(
    session: AsyncSession,
    roll_call_id: str,
    gym_class: GymClass,
    booking: Booking,
    trainer: Principal,
    present: bool,
    session_date: date,
    now: datetime,
) -> AttendanceRecord:
    if present and booking.status == BookingStatus.booked.value:
        await transition_to_attended(session, booking, gym_class, now)

    record = AttendanceRecord(
        roll_call_id=roll_call_id,
        class_id=gym_class.id,
        class_name=gym_class.name,
        member_id=booking.user_id,
        member_name=booking.user_name,
        trainer_id=trainer.user_id,
        present=present,
        session_date=session_date,
        created_at=now,
    )
    session.add(record)
    await session.flush()
    return record


@db_operation
async def record_attendance(
    session: AsyncSession,
    class_id: int,
    trainer: Principal,
    present_member_ids: List[str],
    now: datetime,
) -> Dict[str, Any]:
    """
    Write one attendance record per member holding a seat in the class.

    Every member is written in its own savepoint, so a failure for one member
    is reported and the rest of the roll-call is still committed. Present
    members with a `booked` booking are moved to `attended`.
    """
    gym_class = await get_class_by_id(session, class_id)

    if not trainer.can_manage_class(gym_class):
        raise PermissionDeniedError(
            "record attendance for", "gym class", "only the instructor or an admin can"
        )

    status = effective_status(gym_class, now)
    if status == ClassStatus.cancelled:
        raise InvalidTransitionError(
            "gym class", status.value, "roll-call", "class was cancelled"
        )
    if now < gym_class.start_at:
        raise InvalidTransitionError(
            "gym class", status.value, "roll-call", "class has not started yet"
        )

    result = await session.execute(
        select(Booking)
        .where(
            and_(
                Booking.class_id == class_id,
                Booking.status.in_(SEAT_HOLDING_STATUSES),
            )
        )
        .order_by(Booking.created_at, Booking.id)
    )
    bookings = result.scalars().all()

    present = set(present_member_ids)
    seated = {booking.user_id for booking in bookings}
    unknown_member_ids = [m for m in present_member_ids if m not in seated]

    roll_call_id = str(uuid.uuid4())
    session_date = gym_local_date(gym_class.start_at)

    recorded: List[AttendanceRecord] = []
    failures: List[Dict[str, str]] = []
    for booking in bookings:
        member_id = booking.user_id
        try:
            async with session.begin_nested():
                record = await _write_attendance_record(
                    session,
                    roll_call_id,
                    gym_class,
                    booking,
                    trainer,
                    member_id in present,
                    session_date,
                    now,
                )
        except BaseAppException as e:
            failures.append(
                {"member_id": member_id, "error": e.error_code, "message": e.message}
            )
            logger.warning(
                f"Attendance for member {member_id} not recorded: {e.message}",
                extra={"class_id": class_id, "member_id": member_id},
            )
            continue
        except SQLAlchemyError as e:
            failures.append(
                {"member_id": member_id, "error": "DATABASE_ERROR", "message": str(e)}
            )
            logger.error(
                f"Attendance for member {member_id} failed: {str(e)}",
                extra={"class_id": class_id, "member_id": member_id},
            )
            continue
        except Exception as e:
            failures.append(
                {"member_id": member_id, "error": "INTERNAL_ERROR", "message": str(e)}
            )
            logger.exception(
                f"Unexpected error recording attendance for member {member_id}",
                extra={"class_id": class_id, "member_id": member_id},
            )
            continue
        recorded.append(record)

    await session.commit()

    log_business_event(
        "roll_call_recorded",
        "gym_class",
        class_id,
        {
            "roll_call_id": roll_call_id,
            "recorded": len(recorded),
            "failed": len(failures),
            "unknown": len(unknown_member_ids),
            "trainer_id": trainer.user_id,
        },
    )

    return {
        "roll_call_id": roll_call_id,
        "class_id": class_id,
        "session_date": session_date,
        "recorded": [AttendanceRecordRead.model_validate(r) for r in recorded],
        "failures": failures,
        "unknown_member_ids": unknown_member_ids,
    }


@db_operation
async def list_attendance(
    session: AsyncSession,
    class_id: int,
    roll_call_id: Optional[str] = None,
) -> List[AttendanceRecord]:
    """Attendance records of a class, oldest roll-call first"""
    await get_class_by_id(session, class_id)

    conditions = [AttendanceRecord.class_id == class_id]
    if roll_call_id:
        conditions.append(AttendanceRecord.roll_call_id == roll_call_id)

    result = await session.execute(
        select(AttendanceRecord)
        .where(and_(*conditions))
        .order_by(AttendanceRecord.created_at, AttendanceRecord.id)
    )
    return result.scalars().all()
