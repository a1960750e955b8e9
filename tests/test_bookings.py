"""
Booking flow: reserve, cancel and attend, plus the seat conservation rules.
"""
import asyncio
from datetime import timedelta

import pytest

from app.core.exceptions import (
    AlreadyBookedError,
    AlreadyCancelledError,
    ClassFullError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)
from app.students.crud import bookings as bookings_crud
from app.students.crud.bookings import (
    book_class,
    cancel_booking,
    mark_attended,
    get_bookings_by_user,
    get_bookings_by_class,
)
from app.students.models.bookings import BookingStatus
from conftest import (
    NOW,
    booking_status,
    make_member,
    seat_holding_bookings,
    seats_taken,
)


async def book(session_factory, class_id, principal, now=NOW):
    async with session_factory() as db:
        booking = await book_class(db, class_id, principal, now)
        return booking.id


class TestBook:
    @pytest.mark.asyncio
    async def test_book_takes_a_seat(self, make_class, session_factory, member):
        class_id = await make_class(capacity=3)

        async with session_factory() as db:
            booking = await book_class(db, class_id, member, NOW)

        assert booking.status == BookingStatus.booked.value
        assert booking.user_id == member.user_id
        assert booking.user_name == member.display_name
        assert booking.class_name == "Morning Yoga"
        assert await seats_taken(session_factory, class_id) == 1

    @pytest.mark.asyncio
    async def test_double_booking_rejected(self, make_class, session_factory, member):
        class_id = await make_class()
        first_id = await book(session_factory, class_id, member)

        async with session_factory() as db:
            with pytest.raises(AlreadyBookedError) as exc_info:
                await book_class(db, class_id, member, NOW)

        assert exc_info.value.details["booking_id"] == first_id
        assert await seats_taken(session_factory, class_id) == 1

    @pytest.mark.asyncio
    async def test_unknown_class(self, session, member):
        with pytest.raises(NotFoundError):
            await book_class(session, 4242, member, NOW)

    @pytest.mark.asyncio
    async def test_capacity_one_second_member_gets_class_full(
        self, make_class, session_factory
    ):
        class_id = await make_class(capacity=1)
        await book(session_factory, class_id, make_member(1))

        async with session_factory() as db:
            with pytest.raises(ClassFullError) as exc_info:
                await book_class(db, class_id, make_member(2), NOW)

        assert exc_info.value.error_code == "CLASS_FULL"
        assert await seats_taken(session_factory, class_id) == 1
        assert await seat_holding_bookings(session_factory, class_id) == 1

    @pytest.mark.asyncio
    async def test_started_class_cannot_be_booked(self, make_class, session_factory, member):
        class_id = await make_class()

        async with session_factory() as db:
            with pytest.raises(InvalidTransitionError):
                await book_class(db, class_id, member, NOW + timedelta(days=2))

        assert await seats_taken(session_factory, class_id) == 0

    @pytest.mark.asyncio
    async def test_failed_insert_gives_seat_back(
        self, make_class, session_factory, member, monkeypatch
    ):
        """Anything failing after the reservation leaves no seat taken"""
        class_id = await make_class()

        async def broken_insert(db, gym_class, actor, now):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(bookings_crud, "_insert_booking", broken_insert)

        async with session_factory() as db:
            with pytest.raises(RuntimeError):
                await book_class(db, class_id, member, NOW)

        assert await seats_taken(session_factory, class_id) == 0
        assert await seat_holding_bookings(session_factory, class_id) == 0

    @pytest.mark.asyncio
    async def test_unique_index_catches_missed_duplicate(
        self, make_class, session_factory, member, monkeypatch
    ):
        """A duplicate that slips past the lookup is stopped by the database"""
        class_id = await make_class()
        async with session_factory() as db:
            first = await book_class(db, class_id, member, NOW)

        async def sees_nothing(db, cid, user_id):
            return None

        monkeypatch.setattr(bookings_crud, "get_active_booking", sees_nothing)

        async with session_factory() as db:
            with pytest.raises(AlreadyBookedError):
                await book_class(db, class_id, member, NOW)

        assert await seats_taken(session_factory, class_id) == 1
        assert await booking_status(session_factory, first.id) == BookingStatus.booked.value

    @pytest.mark.asyncio
    async def test_concurrent_bookers_never_overfill(self, make_class, session_factory):
        """N seats, N + K concurrent members: exactly N get in"""
        capacity, extra = 5, 7
        class_id = await make_class(capacity=capacity)

        async def attempt(index):
            async with session_factory() as db:
                try:
                    await book_class(db, class_id, make_member(index), NOW)
                    return "booked"
                except ClassFullError:
                    return "full"

        results = await asyncio.gather(
            *(attempt(index) for index in range(capacity + extra))
        )

        assert results.count("booked") == capacity
        assert results.count("full") == extra
        assert await seats_taken(session_factory, class_id) == capacity
        assert await seat_holding_bookings(session_factory, class_id) == capacity

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_from_one_member(
        self, make_class, session_factory, member
    ):
        class_id = await make_class(capacity=10)

        async def attempt():
            async with session_factory() as db:
                try:
                    await book_class(db, class_id, member, NOW)
                    return "booked"
                except AlreadyBookedError:
                    return "duplicate"

        results = await asyncio.gather(*(attempt() for _ in range(4)))

        assert results.count("booked") == 1
        assert await seats_taken(session_factory, class_id) == 1


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_releases_seat(self, make_class, session_factory, member):
        class_id = await make_class()
        booking_id = await book(session_factory, class_id, member)

        async with session_factory() as db:
            booking = await cancel_booking(db, booking_id, member, NOW)

        assert booking.status == BookingStatus.cancelled.value
        assert booking.cancelled_at == NOW
        assert await seats_taken(session_factory, class_id) == 0

    @pytest.mark.asyncio
    async def test_second_cancel_reports_already_cancelled(
        self, make_class, session_factory, member
    ):
        class_id = await make_class()
        booking_id = await book(session_factory, class_id, member)

        async with session_factory() as db:
            await cancel_booking(db, booking_id, member, NOW)

        async with session_factory() as db:
            with pytest.raises(AlreadyCancelledError):
                await cancel_booking(db, booking_id, member, NOW)

        assert await seats_taken(session_factory, class_id) == 0

    @pytest.mark.asyncio
    async def test_rebook_after_cancel_creates_new_booking(
        self, make_class, session_factory, member
    ):
        class_id = await make_class()
        first_id = await book(session_factory, class_id, member)

        async with session_factory() as db:
            await cancel_booking(db, first_id, member, NOW)

        second_id = await book(session_factory, class_id, member)

        assert second_id != first_id
        assert await booking_status(session_factory, first_id) == "cancelled"
        assert await seats_taken(session_factory, class_id) == 1

    @pytest.mark.asyncio
    async def test_other_member_cannot_cancel(self, make_class, session_factory, member):
        class_id = await make_class()
        booking_id = await book(session_factory, class_id, member)

        async with session_factory() as db:
            with pytest.raises(PermissionDeniedError):
                await cancel_booking(db, booking_id, make_member(2), NOW)

    @pytest.mark.asyncio
    async def test_instructor_can_cancel(self, make_class, session_factory, member, trainer):
        class_id = await make_class()
        booking_id = await book(session_factory, class_id, member)

        async with session_factory() as db:
            await cancel_booking(db, booking_id, trainer, NOW)

        assert await seats_taken(session_factory, class_id) == 0

    @pytest.mark.asyncio
    async def test_cannot_cancel_after_class_completed(
        self, make_class, session_factory, member
    ):
        class_id = await make_class()
        booking_id = await book(session_factory, class_id, member)

        async with session_factory() as db:
            with pytest.raises(InvalidTransitionError):
                await cancel_booking(db, booking_id, member, NOW + timedelta(days=3))

        assert await seats_taken(session_factory, class_id) == 1

    @pytest.mark.asyncio
    async def test_unknown_booking(self, session, member):
        with pytest.raises(NotFoundError):
            await cancel_booking(session, 31337, member, NOW)


class TestMarkAttended:
    @pytest.mark.asyncio
    async def test_attended_keeps_the_seat(
        self, make_class, session_factory, member, trainer
    ):
        class_id = await make_class()
        booking_id = await book(session_factory, class_id, member)
        during_class = NOW + timedelta(days=1, hours=9, minutes=10)

        async with session_factory() as db:
            booking = await mark_attended(db, booking_id, trainer, during_class)

        assert booking.status == BookingStatus.attended.value
        assert booking.attended_at == during_class
        assert await seats_taken(session_factory, class_id) == 1
        assert await seat_holding_bookings(session_factory, class_id) == 1

    @pytest.mark.asyncio
    async def test_not_before_start(self, make_class, session_factory, member, trainer):
        class_id = await make_class()
        booking_id = await book(session_factory, class_id, member)

        async with session_factory() as db:
            with pytest.raises(InvalidTransitionError):
                await mark_attended(db, booking_id, trainer, NOW)

        assert await booking_status(session_factory, booking_id) == "booked"

    @pytest.mark.asyncio
    async def test_attended_booking_cannot_be_cancelled(
        self, make_class, session_factory, member, trainer
    ):
        class_id = await make_class()
        booking_id = await book(session_factory, class_id, member)
        during_class = NOW + timedelta(days=1, hours=9, minutes=10)

        async with session_factory() as db:
            await mark_attended(db, booking_id, trainer, during_class)

        async with session_factory() as db:
            with pytest.raises(InvalidTransitionError):
                await cancel_booking(db, booking_id, member, during_class)

    @pytest.mark.asyncio
    async def test_cancelled_booking_cannot_be_attended(
        self, make_class, session_factory, member, trainer
    ):
        class_id = await make_class()
        booking_id = await book(session_factory, class_id, member)

        async with session_factory() as db:
            await cancel_booking(db, booking_id, member, NOW)

        async with session_factory() as db:
            with pytest.raises(AlreadyCancelledError):
                await mark_attended(
                    db, booking_id, trainer, NOW + timedelta(days=1, hours=9, minutes=10)
                )

    @pytest.mark.asyncio
    async def test_member_cannot_mark_attendance(self, make_class, session_factory, member):
        class_id = await make_class()
        booking_id = await book(session_factory, class_id, member)

        async with session_factory() as db:
            with pytest.raises(PermissionDeniedError):
                await mark_attended(
                    db, booking_id, member, NOW + timedelta(days=1, hours=9, minutes=10)
                )


class TestConservation:
    @pytest.mark.asyncio
    async def test_enrolled_matches_seat_holding_bookings(
        self, make_class, session_factory, trainer
    ):
        class_id = await make_class(capacity=4)
        booking_ids = [
            await book(session_factory, class_id, make_member(index)) for index in range(4)
        ]

        async with session_factory() as db:
            await cancel_booking(db, booking_ids[0], make_member(0), NOW)

        await book(session_factory, class_id, make_member(9))

        async with session_factory() as db:
            await mark_attended(
                db, booking_ids[1], trainer, NOW + timedelta(days=1, hours=9, minutes=5)
            )

        assert await seats_taken(session_factory, class_id) == 4
        assert await seat_holding_bookings(session_factory, class_id) == 4


class TestListing:
    @pytest.mark.asyncio
    async def test_bookings_by_user(self, make_class, session_factory, member):
        first = await make_class(name="Spin")
        second = await make_class(name="Pilates")
        await book(session_factory, first, member)
        cancelled_id = await book(session_factory, second, member)

        async with session_factory() as db:
            await cancel_booking(db, cancelled_id, member, NOW)

        async with session_factory() as db:
            bookings, total = await get_bookings_by_user(db, member.user_id)
            active, active_total = await get_bookings_by_user(
                db, member.user_id, status=BookingStatus.booked
            )

        assert total == 2
        assert {b.class_name for b in bookings} == {"Spin", "Pilates"}
        assert active_total == 1
        assert active[0].class_name == "Spin"

    @pytest.mark.asyncio
    async def test_bookings_by_class(self, make_class, session_factory):
        class_id = await make_class()
        for index in range(3):
            await book(session_factory, class_id, make_member(index))

        async with session_factory() as db:
            bookings = await get_bookings_by_class(db, class_id)

        assert [b.user_id for b in bookings] == ["member-0", "member-1", "member-2"]
