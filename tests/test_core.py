"""
Core helpers: identity tokens, role capabilities, gym-local time and log output.
"""
import json
import logging
from datetime import date, datetime, timezone

import pytest

from app.core.clock import day_bounds_utc, gym_local_date
from app.core.exceptions import AuthenticationError
from app.core.jwt_auth import JWTManager
from app.core.logging_utils import ErrorTracker, JsonFormatter
from app.core.principal import Principal, RoleType
from app.staff.models.classes import GymClass


class TestJWT:
    def test_token_round_trip(self):
        manager = JWTManager(secret_key="k1")
        token = manager.create_access_token("u-7", "trainer", "Sam", "sam@gym.test")

        principal = manager.principal_from_token(token)

        assert principal == Principal("u-7", RoleType.trainer, "Sam", "sam@gym.test")

    def test_wrong_secret(self):
        token = JWTManager(secret_key="k1").create_access_token("u-7", "member")

        with pytest.raises(AuthenticationError):
            JWTManager(secret_key="k2").decode_token(token)

    def test_unknown_role(self):
        manager = JWTManager(secret_key="k1")
        token = manager.create_access_token("u-7", "janitor")

        with pytest.raises(AuthenticationError):
            manager.principal_from_token(token)

    def test_wrong_token_type(self):
        manager = JWTManager(secret_key="k1")
        token = manager.create_access_token("u-7", "member", extra_data={"type": "refresh"})

        with pytest.raises(AuthenticationError):
            manager.decode_token(token)


class TestPrincipal:
    def test_capabilities(self):
        admin = Principal("a", RoleType.admin)
        trainer = Principal("t", RoleType.trainer)
        member = Principal("m", RoleType.member)
        gym_class = GymClass(instructor_id="t")

        assert admin.can_manage_class(gym_class)
        assert trainer.can_manage_class(gym_class)
        assert not Principal("t2", RoleType.trainer).can_manage_class(gym_class)
        assert not member.can_schedule_for("m")

        assert member.can_act_for("m")
        assert not member.can_act_for("other")
        assert admin.can_act_for("other")
        assert trainer.is_staff and not member.is_staff


class TestGymTime:
    def test_day_bounds_in_utc(self):
        start, end = day_bounds_utc(date(2026, 3, 2))

        assert start == datetime(2026, 3, 2, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 3, tzinfo=timezone.utc)

    def test_day_bounds_follow_local_dst(self):
        # US clocks spring forward on 2026-03-08
        start, end = day_bounds_utc(date(2026, 3, 8), tz_name="America/New_York")

        assert start == datetime(2026, 3, 8, 5, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 9, 4, tzinfo=timezone.utc)

    def test_local_date(self):
        late_evening = datetime(2026, 3, 3, 2, 30, tzinfo=timezone.utc)

        assert gym_local_date(late_evening) == date(2026, 3, 3)
        assert gym_local_date(late_evening, "America/Los_Angeles") == date(2026, 3, 2)


class TestLogging:
    def test_json_formatter_keeps_extra_fields(self):
        record = logging.LogRecord(
            "gym", logging.INFO, __file__, 10, "Seat reserved", None, None
        )
        record.class_id = 3
        record.when = datetime(2026, 3, 2, tzinfo=timezone.utc)

        payload = json.loads(JsonFormatter().format(record))

        assert payload["message"] == "Seat reserved"
        assert payload["class_id"] == 3
        assert payload["when"].startswith("2026-03-02")

    def test_error_tracker_counts(self):
        tracker = ErrorTracker(max_history=2)
        for _ in range(3):
            tracker.track_error("HTTP_500", "boom")

        stats = tracker.get_stats()
        assert stats["error_counts"] == {"HTTP_500": 3}
        assert len(stats["last_errors"]) == 2
