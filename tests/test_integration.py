"""End-to-end booking flows through the HTTP API against a SQLite store."""

from decimal import Decimal

from fastapi.testclient import TestClient
import pytest

from evbooking.database import db_manager
from evbooking.main import app
from evbooking.models import User

ADMIN = {"X-User-Id": "user_admin"}
ALICE = {"X-User-Id": "user_alice"}
BOB = {"X-User-Id": "user_bob"}


def window(start_hour, start_minute, end_hour, end_minute):
    return {
        "start_time": f"2030-01-01T{start_hour:02d}:{start_minute:02d}:00Z",
        "end_time": f"2030-01-01T{end_hour:02d}:{end_minute:02d}:00Z",
    }


async def seed_admin():
    async with db_manager.session_factory() as session:
        session.add(
            User(external_id="user_admin", email="admin@example.com", role="admin")
        )
        await session.commit()


@pytest.fixture
def client(tmp_path, monkeypatch):
    """Test client running the full application lifespan."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setenv("REALTIME_ENABLED", "false")
    monkeypatch.setenv("ROLE_CACHE_TTL_SECONDS", "0")
    monkeypatch.setenv("BOOKING_RETRY_BASE_DELAY", "0.001")

    with TestClient(app) as test_client:
        test_client.portal.call(seed_admin)
        yield test_client


@pytest.fixture
def station(client):
    """A two-slot station created through the admin API."""
    response = client.post(
        "/admin/stations",
        headers=ADMIN,
        json={
            "name": "Central Charging Hub",
            "address": "1 Main Street",
            "latitude": 40.7128,
            "longitude": -74.0060,
            "total_slots": 2,
            "pricing_per_hour": "25.00",
        },
    )
    assert response.status_code == 201
    return response.json()


def book(client, headers, station_id, times, **extra):
    return client.post(
        "/bookings", headers=headers, json={"station_id": station_id, **times, **extra}
    )


def set_status(client, headers, booking_id, status):
    return client.put(
        f"/bookings/{booking_id}/status", headers=headers, json={"status": status}
    )


def set_power(client, headers, booking_id, power_kw):
    return client.put(
        f"/bookings/{booking_id}/power", headers=headers, json={"power_kw": power_kw}
    )


class TestBookingFlow:
    """Test admission, capacity and lifecycle end to end."""

    def test_capacity_is_enforced(self, client, station):
        """Two slots admit two overlapping bookings and reject the third."""
        first = book(client, ALICE, station["id"], window(10, 0, 11, 0))
        second = book(client, BOB, station["id"], window(10, 30, 11, 30))
        third = book(client, BOB, station["id"], window(10, 45, 11, 15))

        assert first.status_code == 201
        assert second.status_code == 201
        assert {first.json()["slot_number"], second.json()["slot_number"]} == {1, 2}
        assert Decimal(first.json()["total_cost"]) == Decimal("25.00")
        assert Decimal(second.json()["total_cost"]) == Decimal("25.00")

        assert third.status_code == 409
        assert third.json()["code"] == "NoCapacity"

    def test_back_to_back_bookings(self, client, station):
        """A window starting when another ends does not overlap it."""
        for hour in (9, 10, 11):
            response = book(
                client, ALICE, station["id"], window(hour, 0, hour + 1, 0), slot_number=1
            )
            assert response.status_code == 201
            assert response.json()["slot_number"] == 1

    def test_requested_slot_conflict(self, client, station):
        assert book(
            client, ALICE, station["id"], window(10, 0, 11, 0), slot_number=2
        ).status_code == 201

        response = book(
            client, BOB, station["id"], window(10, 30, 11, 0), slot_number=2
        )

        assert response.status_code == 409
        assert response.json()["code"] == "SlotConflict"

    def test_invalid_window(self, client, station):
        response = book(client, ALICE, station["id"], window(11, 0, 10, 0))

        assert response.status_code == 400
        assert response.json()["code"] == "InvalidWindow"

    def test_unknown_station(self, client):
        response = book(client, ALICE, 999, window(10, 0, 11, 0))

        assert response.status_code == 404
        assert response.json()["code"] == "StationUnavailable"

    def test_lifecycle(self, client, station):
        """pending -> active -> completed, with power readings while active."""
        response = book(client, ALICE, station["id"], window(10, 0, 11, 0))
        booking_id = response.json()["id"]

        assert set_power(client, ALICE, booking_id, 5).status_code == 404

        response = set_status(client, ALICE, booking_id, "active")
        assert response.status_code == 200
        assert response.json()["status"] == "active"

        response = set_power(client, ALICE, booking_id, 7.4)
        assert response.status_code == 200
        assert response.json()["booking"]["power_consumption"] == 7.4

        assert set_status(client, BOB, booking_id, "completed").status_code == 404
        assert set_status(client, ALICE, booking_id, "completed").status_code == 200

        response = set_status(client, ALICE, booking_id, "active")
        assert response.status_code == 409
        assert response.json()["code"] == "InvalidTransition"

        assert client.delete(f"/bookings/{booking_id}", headers=ALICE).status_code == 404

    def test_cancellation_frees_the_slot(self, client, station):
        ids = [
            book(client, user, station["id"], window(10, 0, 11, 0)).json()["id"]
            for user in (ALICE, BOB)
        ]

        response = client.delete(f"/bookings/{ids[0]}", headers=ALICE)
        assert response.status_code == 200
        assert response.json()["booking"]["status"] == "cancelled"

        response = book(client, BOB, station["id"], window(10, 0, 11, 0))
        assert response.status_code == 201

    def test_my_bookings(self, client, station):
        book(client, ALICE, station["id"], window(8, 0, 9, 0))
        book(client, ALICE, station["id"], window(12, 0, 13, 0))
        book(client, BOB, station["id"], window(10, 0, 11, 0))

        response = client.get("/bookings/my-bookings", headers=ALICE)

        assert response.status_code == 200
        data = response.json()
        assert [b["start_time"][11:16] for b in data] == ["12:00", "08:00"]
        assert all(b["station_name"] == "Central Charging Hub" for b in data)

    def test_identity_required(self, client):
        assert client.get("/bookings/my-bookings").status_code == 401


class TestStationDirectory:
    """Test public station reads."""

    def test_availability(self, client, station):
        book(client, ALICE, station["id"], window(10, 0, 11, 0))
        book(client, BOB, station["id"], window(10, 30, 12, 0))

        response = client.get(
            f"/stations/{station['id']}/availability", params={"date": "2030-01-01"}
        )

        assert response.status_code == 200
        hours = {slot["time"]: slot for slot in response.json()}
        assert len(hours) == 24
        assert hours["09:00"]["available_slots"] == 2
        assert hours["10:00"]["available_slots"] == 0
        assert hours["10:00"]["is_available"] is False
        assert hours["11:00"]["available_slots"] == 1
        assert hours["12:00"]["available_slots"] == 2

    def test_list_and_detail(self, client, station):
        book(client, ALICE, station["id"], window(10, 0, 11, 0))

        listing = client.get("/stations").json()
        assert [s["id"] for s in listing] == [station["id"]]
        assert listing[0]["available_slots"] == 2

        nearby = client.get("/stations", params={"lat": 40.7, "lng": -74.0, "radius": 5})
        assert len(nearby.json()) == 1
        far = client.get("/stations", params={"lat": 51.5, "lng": -0.12, "radius": 5})
        assert far.json() == []

        detail = client.get(f"/stations/{station['id']}").json()
        assert len(detail["current_bookings"]) == 1

    def test_power_history(self, client, station):
        booking_id = book(client, ALICE, station["id"], window(10, 0, 11, 0)).json()["id"]
        set_status(client, ALICE, booking_id, "active")
        set_power(client, ALICE, booking_id, 7.4)

        response = client.get(f"/stations/{station['id']}/power")

        assert response.status_code == 200
        history = response.json()
        assert sum(entry["readings"] for entry in history) == 2
        assert max(entry["peak_power"] for entry in history) == 7.4

        assert client.get(
            f"/stations/{station['id']}/power", params={"hours": 0}
        ).status_code == 400
        assert client.get("/stations/999/power").status_code == 404

    def test_inactive_station_hidden(self, client, station):
        response = client.put(
            f"/admin/stations/{station['id']}", headers=ADMIN, json={"status": "inactive"}
        )
        assert response.status_code == 200

        assert client.get("/stations").json() == []
        assert client.get(f"/stations/{station['id']}").status_code == 404
        assert book(client, ALICE, station["id"], window(10, 0, 11, 0)).status_code == 404


class TestAdministration:
    """Test admin station management and booking overrides."""

    def test_non_admin_rejected(self, client, station):
        assert client.get("/admin/stations", headers=ALICE).status_code == 403
        assert client.get("/admin/bookings", headers=ALICE).status_code == 403

    def test_capacity_cannot_drop_below_held_slot(self, client, station):
        book(client, ALICE, station["id"], window(10, 0, 11, 0), slot_number=2)

        response = client.put(
            f"/admin/stations/{station['id']}", headers=ADMIN, json={"total_slots": 1}
        )

        assert response.status_code == 409
        assert response.json()["code"] == "CapacityInUse"

        response = client.put(
            f"/admin/stations/{station['id']}", headers=ADMIN, json={"total_slots": 3}
        )
        assert response.status_code == 200
        assert response.json()["total_slots"] == 3

    def test_delete_blocked_by_active_booking(self, client, station):
        response = book(client, ALICE, station["id"], window(10, 0, 11, 0))
        booking_id = response.json()["id"]
        set_status(client, ALICE, booking_id, "active")

        response = client.delete(f"/admin/stations/{station['id']}", headers=ADMIN)
        assert response.status_code == 409
        assert response.json()["code"] == "StationInUse"

        set_status(client, ALICE, booking_id, "completed")
        response = client.delete(f"/admin/stations/{station['id']}", headers=ADMIN)
        assert response.status_code == 200
        assert client.get(f"/stations/{station['id']}").status_code == 404

    def test_delete_blocked_by_pending_booking(self, client, station):
        booking_id = book(client, ALICE, station["id"], window(10, 0, 11, 0)).json()["id"]

        response = client.delete(f"/admin/stations/{station['id']}", headers=ADMIN)
        assert response.status_code == 409
        assert response.json()["code"] == "StationInUse"

        assert client.delete(f"/bookings/{booking_id}", headers=ALICE).status_code == 200
        response = client.delete(f"/admin/stations/{station['id']}", headers=ADMIN)
        assert response.status_code == 200

    def test_admin_booking_list_and_override(self, client, station):
        first = book(client, ALICE, station["id"], window(10, 0, 11, 0)).json()
        book(client, BOB, station["id"], window(12, 0, 13, 0))

        response = client.put(
            f"/admin/bookings/{first['id']}/status",
            headers=ADMIN,
            json={"status": "cancelled", "reason": "Charger maintenance"},
        )
        assert response.status_code == 200

        page = client.get(
            "/admin/bookings", headers=ADMIN, params={"status": "cancelled"}
        ).json()
        assert [b["id"] for b in page["bookings"]] == [first["id"]]
        assert page["bookings"][0]["station_name"] == "Central Charging Hub"
        assert page["pagination"] == {"page": 1, "limit": 50, "total": 1, "total_pages": 1}

        page = client.get(
            "/admin/bookings", headers=ADMIN, params={"limit": 1, "page": 2}
        ).json()
        assert len(page["bookings"]) == 1
        assert page["pagination"]["total"] == 2
        assert page["pagination"]["total_pages"] == 2

    def test_admin_station_counts(self, client, station):
        book(client, ALICE, station["id"], window(10, 0, 11, 0))

        stations = client.get("/admin/stations", headers=ADMIN).json()

        assert stations[0]["total_bookings"] == 1
        assert stations[0]["current_active"] == 0
