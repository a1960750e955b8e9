import os

# Settings are read at import time
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LEDGER_RETRY_DELAY"] = "0"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["LOG_FORMAT"] = "text"
os.environ["GYM_TIMEZONE"] = "UTC"

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.pool import NullPool

from app.core.clock import Clock, get_clock
from app.core.database import (
    DatabaseManager,
    build_engine,
    build_sessionmaker,
    get_session,
)
from app.core.jwt_auth import jwt_manager
from app.core.principal import Principal, RoleType
from app.main import app
from app.staff.crud.classes import create_class
from app.staff.models.classes import GymClass
from app.staff.schemas.classes import GymClassCreate
from app.students.models.bookings import Booking, SEAT_HOLDING_STATUSES

# Monday morning
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FixedClock(Clock):
    """Clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta):
        self.current = self.current + timedelta(**delta)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
async def engine(tmp_path):
    """Fresh SQLite file per test; NullPool gives each session its own connection"""
    test_engine = build_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'gym.db'}", poolclass=NullPool
    )
    await DatabaseManager(bind=test_engine).create_tables()
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as db:
        yield db


@pytest.fixture
def admin():
    return Principal(user_id="admin-1", role=RoleType.admin, display_name="Alex Admin")


@pytest.fixture
def trainer():
    return Principal(
        user_id="trainer-1",
        role=RoleType.trainer,
        display_name="Tara Trainer",
        email="tara@gym.test",
    )


@pytest.fixture
def other_trainer():
    return Principal(user_id="trainer-2", role=RoleType.trainer, display_name="Tom Trainer")


def make_member(index: int) -> Principal:
    return Principal(
        user_id=f"member-{index}",
        role=RoleType.member,
        display_name=f"Member {index}",
        email=f"member{index}@gym.test",
    )


@pytest.fixture
def member():
    return make_member(1)


def class_payload(**overrides) -> dict:
    start = NOW + timedelta(days=1, hours=9)
    data = {
        "name": "Morning Yoga",
        "description": "Slow flow",
        "class_type": "yoga",
        "instructor_id": "trainer-1",
        "instructor_name": "Tara Trainer",
        "start_at": start,
        "end_at": start + timedelta(hours=1),
        "location": "Studio A",
        "capacity": 10,
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_class(session_factory, trainer):
    """Create a class in its own session and return its id"""

    async def _make_class(actor: Principal = None, **overrides) -> int:
        async with session_factory() as db:
            gym_class = await create_class(
                db, GymClassCreate(**class_payload(**overrides)), actor or trainer
            )
            return gym_class.id

    return _make_class


async def seats_taken(session_factory, class_id: int) -> int:
    async with session_factory() as db:
        result = await db.execute(select(GymClass.enrolled).where(GymClass.id == class_id))
        return result.scalar_one()


async def seat_holding_bookings(session_factory, class_id: int) -> int:
    async with session_factory() as db:
        result = await db.execute(
            select(func.count(Booking.id)).where(
                Booking.class_id == class_id,
                Booking.status.in_(SEAT_HOLDING_STATUSES),
            )
        )
        return result.scalar_one()


async def booking_status(session_factory, booking_id: int) -> str:
    async with session_factory() as db:
        result = await db.execute(select(Booking.status).where(Booking.id == booking_id))
        return result.scalar_one()


def auth_headers(principal: Principal) -> dict:
    token = jwt_manager.create_access_token(
        principal.user_id,
        principal.role.value,
        principal.display_name,
        principal.email,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(session_factory, clock):
    async def override_get_session():
        async with session_factory() as db:
            yield db

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_clock] = lambda: clock

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()
