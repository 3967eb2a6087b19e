from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.types import TypeDecorator

from evbooking.database import Base


def utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps on every backend.

    Naive values are taken to be UTC. SQLite drops the offset on storage, so
    values read back without one are re-tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class User(Base):
    """User known to the identity provider, with its role"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String(100), unique=True, index=True, nullable=False)
    email = Column(String(100), unique=True, index=True)
    role = Column(String(20), nullable=False, default="user")  # user, admin
    created_at = Column(UTCDateTime, default=utcnow)


class Station(Base):
    """Charging station with a fixed number of bookable slots"""

    __tablename__ = "stations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    address = Column(String(200), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    total_slots = Column(Integer, nullable=False, default=4)
    connector_types = Column(JSON, default=lambda: ["Type 2", "CCS"])
    pricing_per_hour = Column(Numeric(10, 2), nullable=False, default=25)
    amenities = Column(JSON, default=list)
    max_power_kw = Column(Float, default=50)
    status = Column(String(20), nullable=False, default="active")  # active, inactive
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint("total_slots >= 1", name="check_station_total_slots"),
        CheckConstraint(
            "status IN ('active', 'inactive')", name="check_station_status"
        ),
    )


class Booking(Base):
    """Reservation of one slot of a station over a half-open time window"""

    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    station_id = Column(Integer, ForeignKey("stations.id"), nullable=False)
    user_id = Column(String(100), nullable=False, index=True)
    slot_number = Column(Integer, nullable=False)
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    total_cost = Column(Numeric(10, 2), nullable=False, default=0)
    # pending, active, completed, cancelled
    status = Column(String(20), nullable=False, default="pending")
    power_consumption = Column(Float, nullable=False, default=0)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_booking_window"),
        CheckConstraint("total_cost >= 0", name="check_booking_cost"),
        CheckConstraint("slot_number >= 1", name="check_booking_slot_number"),
        CheckConstraint("power_consumption >= 0", name="check_booking_power"),
        CheckConstraint(
            "status IN ('pending', 'active', 'completed', 'cancelled')",
            name="check_booking_status",
        ),
        Index(
            "ix_bookings_station_window",
            "station_id",
            "status",
            "start_time",
            "end_time",
        ),
    )


class PowerLog(Base):
    """Append-only power reading"""

    __tablename__ = "power_logs"

    id = Column(Integer, primary_key=True, index=True)
    station_id = Column(Integer, ForeignKey("stations.id"), nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)
    power_kw = Column(Float, nullable=False, default=0)
    recorded_at = Column(UTCDateTime, default=utcnow)
