"""
HTTP surface: routing, auth, status codes and the error envelope.
"""
from datetime import timedelta

import pytest

from conftest import NOW, auth_headers, make_member


def class_json(**overrides) -> dict:
    start = NOW + timedelta(days=1, hours=9)
    data = {
        "name": "Morning Yoga",
        "class_type": "Yoga",
        "instructor_id": "trainer-1",
        "instructor_name": "Tara Trainer",
        "start_at": start.isoformat(),
        "end_at": (start + timedelta(hours=1)).isoformat(),
        "location": "Studio A",
        "capacity": 2,
    }
    data.update(overrides)
    return data


async def create_class_via_api(client, trainer, **overrides) -> dict:
    response = await client.post(
        "/api/v1/classes", json=class_json(**overrides), headers=auth_headers(trainer)
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestAuth:
    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get("/api/v1/classes")

        assert response.status_code == 401
        assert response.json()["error"] == "AUTHENTICATION_ERROR"

    @pytest.mark.asyncio
    async def test_garbage_token(self, client):
        response = await client.get(
            "/api/v1/classes", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_member_cannot_create_classes(self, client, member):
        response = await client.post(
            "/api/v1/classes", json=class_json(), headers=auth_headers(member)
        )
        assert response.status_code == 403


class TestClassesApi:
    @pytest.mark.asyncio
    async def test_create_and_get(self, client, trainer, member):
        created = await create_class_via_api(client, trainer)

        assert created["status"] == "scheduled"
        assert created["enrolled"] == 0
        assert created["available_spots"] == 2
        assert created["class_type"] == "yoga"

        response = await client.get(
            f"/api/v1/classes/{created['id']}", headers=auth_headers(member)
        )
        assert response.status_code == 200
        assert response.json()["name"] == "Morning Yoga"

    @pytest.mark.asyncio
    async def test_zero_capacity_is_a_validation_error(self, client, trainer):
        response = await client.post(
            "/api/v1/classes", json=class_json(capacity=0), headers=auth_headers(trainer)
        )

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert body["path"] == "/api/v1/classes"

    @pytest.mark.asyncio
    async def test_unknown_class(self, client, member):
        response = await client.get("/api/v1/classes/999", headers=auth_headers(member))

        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_list_with_pagination(self, client, trainer):
        for index in range(3):
            await create_class_via_api(client, trainer, name=f"Class {index}")

        response = await client.get(
            "/api/v1/classes?page=1&size=2", headers=auth_headers(trainer)
        )

        body = response.json()
        assert response.status_code == 200
        assert body["total"] == 3
        assert body["pages"] == 2
        assert len(body["classes"]) == 2

    @pytest.mark.asyncio
    async def test_capacity_violation(self, client, trainer):
        created = await create_class_via_api(client, trainer, capacity=3)
        for index in range(2):
            await client.post(
                "/api/v1/bookings",
                json={"class_id": created["id"]},
                headers=auth_headers(make_member(index)),
            )

        response = await client.patch(
            f"/api/v1/classes/{created['id']}",
            json={"capacity": 1},
            headers=auth_headers(trainer),
        )

        assert response.status_code == 409
        assert response.json()["error"] == "CAPACITY_VIOLATION"

    @pytest.mark.asyncio
    async def test_cancel_class_cascades(self, client, trainer, member):
        created = await create_class_via_api(client, trainer)
        booked = await client.post(
            "/api/v1/bookings", json={"class_id": created["id"]}, headers=auth_headers(member)
        )

        response = await client.post(
            f"/api/v1/classes/{created['id']}/status",
            json={"status": "cancelled", "reason": "Instructor sick"},
            headers=auth_headers(trainer),
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["enrolled"] == 0

        mine = await client.get("/api/v1/bookings/me", headers=auth_headers(member))
        assert mine.json()["bookings"][0]["id"] == booked.json()["id"]
        assert mine.json()["bookings"][0]["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_invalid_transition(self, client, trainer):
        created = await create_class_via_api(client, trainer)

        response = await client.post(
            f"/api/v1/classes/{created['id']}/status",
            json={"status": "completed"},
            headers=auth_headers(trainer),
        )

        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_TRANSITION"

    @pytest.mark.asyncio
    async def test_statistics_and_sweep(self, client, trainer, admin, clock):
        await create_class_via_api(client, trainer)

        stats = await client.get("/api/v1/classes/statistics", headers=auth_headers(trainer))
        assert stats.status_code == 200
        assert stats.json()["scheduled_classes"] == 1

        clock.advance(days=1, hours=9, minutes=30)
        swept = await client.post("/api/v1/classes/sweep", headers=auth_headers(admin))
        assert swept.status_code == 200
        assert swept.json() == {"started": 1, "completed": 0}

    @pytest.mark.asyncio
    async def test_sweep_is_admin_only(self, client, trainer):
        response = await client.post("/api/v1/classes/sweep", headers=auth_headers(trainer))
        assert response.status_code == 403


class TestBookingsApi:
    @pytest.mark.asyncio
    async def test_full_class_and_duplicate_have_distinct_codes(self, client, trainer):
        created = await create_class_via_api(client, trainer, capacity=1)
        first = make_member(1)

        response = await client.post(
            "/api/v1/bookings", json={"class_id": created["id"]}, headers=auth_headers(first)
        )
        assert response.status_code == 201
        assert response.json()["status"] == "booked"

        duplicate = await client.post(
            "/api/v1/bookings", json={"class_id": created["id"]}, headers=auth_headers(first)
        )
        assert duplicate.status_code == 409
        assert duplicate.json()["error"] == "ALREADY_BOOKED"

        full = await client.post(
            "/api/v1/bookings",
            json={"class_id": created["id"]},
            headers=auth_headers(make_member(2)),
        )
        assert full.status_code == 409
        assert full.json()["error"] == "CLASS_FULL"

    @pytest.mark.asyncio
    async def test_cancel_twice(self, client, trainer, member):
        created = await create_class_via_api(client, trainer)
        booking = (
            await client.post(
                "/api/v1/bookings", json={"class_id": created["id"]}, headers=auth_headers(member)
            )
        ).json()

        first = await client.post(
            f"/api/v1/bookings/{booking['id']}/cancel", headers=auth_headers(member)
        )
        second = await client.post(
            f"/api/v1/bookings/{booking['id']}/cancel", headers=auth_headers(member)
        )

        assert first.status_code == 200
        assert first.json()["status"] == "cancelled"
        assert second.status_code == 409
        assert second.json()["error"] == "ALREADY_CANCELLED"

        refreshed = await client.get(
            f"/api/v1/classes/{created['id']}", headers=auth_headers(member)
        )
        assert refreshed.json()["enrolled"] == 0

    @pytest.mark.asyncio
    async def test_other_users_bookings_are_private(self, client, member):
        response = await client.get(
            "/api/v1/bookings/users/member-2", headers=auth_headers(member)
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_roster_and_attendance(self, client, trainer, member, clock):
        created = await create_class_via_api(client, trainer)
        booking = (
            await client.post(
                "/api/v1/bookings", json={"class_id": created["id"]}, headers=auth_headers(member)
            )
        ).json()

        roster = await client.get(
            f"/api/v1/classes/{created['id']}/bookings", headers=auth_headers(trainer)
        )
        assert roster.status_code == 200
        assert [b["user_id"] for b in roster.json()["bookings"]] == [member.user_id]

        too_early = await client.post(
            f"/api/v1/classes/bookings/{booking['id']}/attended", headers=auth_headers(trainer)
        )
        assert too_early.status_code == 409

        clock.advance(days=1, hours=9, minutes=5)
        roll_call = await client.post(
            f"/api/v1/classes/{created['id']}/attendance",
            json={"present_member_ids": [member.user_id, "stranger"]},
            headers=auth_headers(trainer),
        )
        assert roll_call.status_code == 201
        body = roll_call.json()
        assert [r["member_id"] for r in body["recorded"]] == [member.user_id]
        assert body["unknown_member_ids"] == ["stranger"]

        listed = await client.get(
            f"/api/v1/classes/{created['id']}/attendance", headers=auth_headers(trainer)
        )
        assert listed.json()["total"] == 1
        assert listed.json()["records"][0]["present"] is True


class TestScheduleApi:
    @pytest.mark.asyncio
    async def test_schedule_and_upcoming(self, client, trainer, member):
        created = await create_class_via_api(client, trainer)
        await client.post(
            "/api/v1/bookings", json={"class_id": created["id"]}, headers=auth_headers(member)
        )

        today = await client.get("/api/v1/schedule", headers=auth_headers(member))
        tomorrow = await client.get(
            "/api/v1/schedule?day=tomorrow", headers=auth_headers(member)
        )
        upcoming = await client.get("/api/v1/schedule/upcoming", headers=auth_headers(member))

        assert today.json()["total"] == 0
        assert tomorrow.json()["total"] == 1
        entry = tomorrow.json()["entries"][0]
        assert entry["is_booked"] is True
        assert entry["available_spots"] == 1
        assert [e["id"] for e in upcoming.json()] == [created["id"]]

    @pytest.mark.asyncio
    async def test_bad_day_value(self, client, member):
        response = await client.get("/api/v1/schedule?day=someday", headers=auth_headers(member))
        assert response.status_code == 422


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
