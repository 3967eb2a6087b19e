"""Pytest configuration and fixtures."""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from evbooking.config import Settings
from evbooking.coordinator import BookingCoordinator
from evbooking.database import DatabaseManager
from evbooking.models import Booking, Station, User, utcnow
from tests.helpers import RecordingNotifier, at


@pytest.fixture
def settings():
    """Settings tuned for fast tests."""
    return Settings(
        database_url="sqlite+aiosqlite://",
        max_attempts=3,
        retry_base_delay=0.001,
        transaction_timeout_seconds=5.0,
        role_cache_ttl_seconds=0,
        realtime_enabled=False,
    )


@pytest_asyncio.fixture
async def database(tmp_path):
    """Throw-away SQLite database with all tables created."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}")
    await manager.initialize()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def coordinator(database, notifier, settings):
    return BookingCoordinator(
        database.session_factory, notifier=notifier, settings=settings
    )


@pytest.fixture
def make_station(database):
    """Factory inserting a station row."""

    async def _make_station(**overrides):
        data = {
            "name": "Test Station",
            "address": "1 Test Street",
            "latitude": 52.52,
            "longitude": 13.405,
            "total_slots": 1,
            "pricing_per_hour": Decimal("25.00"),
            "status": "active",
        }
        data.update(overrides)
        async with database.session_factory() as session:
            station = Station(**data)
            session.add(station)
            await session.commit()
            return station

    return _make_station


@pytest.fixture
def make_booking(database):
    """Factory inserting a booking row directly, bypassing admission."""

    async def _make_booking(station, start, end, slot_number=1, **overrides):
        now = utcnow()
        data = {
            "station_id": station.id,
            "user_id": "user_existing",
            "slot_number": slot_number,
            "start_time": start,
            "end_time": end,
            "total_cost": Decimal("0.00"),
            "status": "pending",
            "created_at": now,
            "updated_at": now,
        }
        data.update(overrides)
        async with database.session_factory() as session:
            booking = Booking(**data)
            session.add(booking)
            await session.commit()
            return booking

    return _make_booking


@pytest.fixture
def make_user(database):
    """Factory inserting a user row."""

    async def _make_user(external_id, role="user"):
        async with database.session_factory() as session:
            user = User(external_id=external_id, email=f"{external_id}@example.com", role=role)
            session.add(user)
            await session.commit()
            return user

    return _make_user


@pytest.fixture
def sample_booking():
    """Booking-shaped object as returned by the coordinator."""
    return SimpleNamespace(
        id=1,
        station_id=7,
        user_id="user_1",
        slot_number=1,
        start_time=at(10),
        end_time=at(11),
        total_cost=Decimal("25.00"),
        status="pending",
        power_consumption=0.0,
        created_at=at(9),
        updated_at=at(9),
    )


@pytest.fixture
def mock_coordinator(sample_booking):
    """Coordinator double with async operations."""
    coordinator = MagicMock(spec=BookingCoordinator)
    coordinator.create_booking = AsyncMock(return_value=sample_booking)
    coordinator.update_status = AsyncMock(return_value=sample_booking)
    coordinator.update_power = AsyncMock(return_value=sample_booking)
    coordinator.cancel_booking = AsyncMock(return_value=sample_booking)
    coordinator.list_user_bookings = AsyncMock(return_value=[])
    return coordinator
