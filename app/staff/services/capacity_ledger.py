"""
Capacity ledger - the only writer of `gym_classes.enrolled`.

Every operation is a single conditional UPDATE against the class row, so the
check and the write can never be split by another caller:

* try_reserve: increment guarded by `enrolled < capacity` on a bookable class.
  When the guard matches no row the counter is read again: no free seat means
  full, a free seat means a lost race. Lost races raise StorageConflictError,
  retried here with jittered backoff, and surface as UnavailableError once the
  attempts run out.
* release: decrement floored at zero.
* resize: new capacity applied only while `enrolled <= capacity`.

The ledger runs inside the caller's transaction; rolling that transaction
back undoes the seat change together with whatever the caller wrote.
"""
import enum
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from app.core.config import LEDGER_MAX_ATTEMPTS, LEDGER_RETRY_DELAY
from app.core.exceptions import (
    CapacityViolationError,
    ClassClosedError,
    NotFoundError,
    StorageConflictError,
    UnavailableError,
    ValidationError,
)
from app.staff.models.classes import ClassStatus, GymClass
from app.staff.services.class_status import derive_status

logger = logging.getLogger(__name__)


class ReserveOutcome(str, enum.Enum):
    reserved = "reserved"
    full = "full"


class CapacityLedger:
    def __init__(
        self,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.max_attempts = max_attempts or LEDGER_MAX_ATTEMPTS
        self.retry_delay = LEDGER_RETRY_DELAY if retry_delay is None else retry_delay

    async def _read_counter(self, session: AsyncSession, class_id: int):
        result = await session.execute(
            select(
                GymClass.id,
                GymClass.capacity,
                GymClass.enrolled,
                GymClass.version,
                GymClass.status,
                GymClass.start_at,
                GymClass.end_at,
            ).where(GymClass.id == class_id)
        )
        return result.one_or_none()

    async def _compare_and_swap(
        self, session: AsyncSession, snapshot, now: datetime
    ) -> bool:
        result = await session.execute(
            update(GymClass)
            .where(
                GymClass.id == snapshot.id,
                GymClass.enrolled < GymClass.capacity,
                GymClass.status == ClassStatus.scheduled.value,
                GymClass.start_at > now,
            )
            .values(
                enrolled=GymClass.enrolled + 1,
                version=GymClass.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _reserve_once(
        self, session: AsyncSession, class_id: int, now: datetime
    ) -> ReserveOutcome:
        snapshot = await self._check_bookable(session, class_id, now)
        if snapshot.enrolled >= snapshot.capacity:
            return ReserveOutcome.full

        if await self._compare_and_swap(session, snapshot, now):
            return ReserveOutcome.reserved

        current = await self._check_bookable(session, class_id, now)
        if current.enrolled >= current.capacity:
            return ReserveOutcome.full
        raise StorageConflictError(class_id, current.version)

    async def _check_bookable(
        self, session: AsyncSession, class_id: int, now: datetime
    ):
        snapshot = await self._read_counter(session, class_id)
        if snapshot is None:
            raise NotFoundError("Gym class", str(class_id))

        status = derive_status(snapshot.status, snapshot.start_at, snapshot.end_at, now)
        if status != ClassStatus.scheduled:
            raise ClassClosedError(class_id, status.value)
        return snapshot

    async def try_reserve(
        self, session: AsyncSession, class_id: int, now: datetime
    ) -> ReserveOutcome:
        """Atomically take one seat, or report the class full"""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_random_exponential(multiplier=self.retry_delay, max=self.retry_delay * 20),
                retry=retry_if_exception_type(StorageConflictError),
                before_sleep=before_sleep_log(logger, logging.DEBUG),
            ):
                with attempt:
                    outcome = await self._reserve_once(session, class_id, now)
        except RetryError as e:
            logger.warning(
                f"Seat reservation gave up after {self.max_attempts} conflicting attempts",
                extra={"class_id": class_id, "attempts": self.max_attempts},
            )
            raise UnavailableError(
                "The class is busy right now, please try again",
                {"class_id": class_id, "attempts": self.max_attempts},
            ) from e

        logger.debug(
            f"Seat reservation for class {class_id}: {outcome.value}",
            extra={"class_id": class_id, "outcome": outcome.value},
        )
        return outcome

    async def release(self, session: AsyncSession, class_id: int) -> None:
        """Give one seat back"""
        result = await session.execute(
            update(GymClass)
            .where(GymClass.id == class_id)
            .values(
                enrolled=case(
                    (GymClass.enrolled > 0, GymClass.enrolled - 1),
                    else_=0,
                ),
                version=GymClass.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("Gym class", str(class_id))

    async def resize(
        self, session: AsyncSession, class_id: int, capacity: int
    ) -> None:
        """Change capacity without ever dropping below the seats taken"""
        if capacity <= 0:
            raise ValidationError("Capacity must be a positive integer", {"capacity": capacity})

        result = await session.execute(
            update(GymClass)
            .where(GymClass.id == class_id, GymClass.enrolled <= capacity)
            .values(capacity=capacity, version=GymClass.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        snapshot = await self._read_counter(session, class_id)
        if snapshot is None:
            raise NotFoundError("Gym class", str(class_id))
        raise CapacityViolationError(class_id, capacity, snapshot.enrolled)


capacity_ledger = CapacityLedger()
