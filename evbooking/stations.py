"""
Station directory and station administration.

Directory reads use a plain session. Administrative writes go through
BookingCoordinator.run_transaction with the station's lock so they serialize
with concurrent admissions on the same station.
"""

from datetime import UTC, date, datetime, time, timedelta
import logging
import math
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from evbooking.conflicts import windows_overlap
from evbooking.coordinator import BookingCoordinator
from evbooking.errors import CapacityInUse, StationInUse, StationUnavailable
from evbooking.lifecycle import OCCUPYING_STATUSES, BookingStatus
from evbooking.models import Booking, PowerLog, Station, utcnow
from evbooking.pydantic_models import (
    AdminBookingResponse,
    AdminBookingsPage,
    AdminStationResponse,
    AvailabilitySlot,
    Pagination,
    PowerHistoryEntry,
    StationBookingWindow,
    StationDetailResponse,
    StationDirectoryEntry,
    booking_to_response,
    station_to_response,
)

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


async def _occupied_now(
    session: AsyncSession, station_ids: Optional[List[int]] = None
) -> Dict[int, int]:
    """Active bookings whose window covers the current instant, per station"""
    now = utcnow()
    query = (
        select(Booking.station_id, func.count(Booking.id))
        .where(
            Booking.status == BookingStatus.ACTIVE.value,
            Booking.start_time <= now,
            Booking.end_time > now,
        )
        .group_by(Booking.station_id)
    )
    if station_ids is not None:
        query = query.where(Booking.station_id.in_(station_ids))
    result = await session.execute(query)
    return {station_id: count for station_id, count in result.all()}


def _directory_entry(
    station: Station, occupied: int, distance: Optional[float] = None
) -> Dict[str, Any]:
    return {
        **station_to_response(station).model_dump(),
        "occupied_slots": occupied,
        "available_slots": max(0, station.total_slots - occupied),
        "distance": round(distance, 1) if distance is not None else None,
    }


async def list_stations(
    session: AsyncSession,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius: float = 50,
) -> List[StationDirectoryEntry]:
    result = await session.execute(
        select(Station).where(Station.status == "active").order_by(Station.name)
    )
    stations = result.scalars().all()
    occupied = await _occupied_now(session)

    entries = []
    for station in stations:
        distance = None
        if lat is not None and lng is not None:
            distance = haversine_km(lat, lng, station.latitude, station.longitude)
            if distance > radius:
                continue
        entries.append(
            StationDirectoryEntry(
                **_directory_entry(station, occupied.get(station.id, 0), distance)
            )
        )
    return entries


async def get_station_detail(
    session: AsyncSession, station_id: int
) -> StationDetailResponse:
    station = await session.get(Station, station_id)
    if station is None or station.status != "active":
        raise StationUnavailable("Station not found")

    occupied = await _occupied_now(session, [station_id])
    result = await session.execute(
        select(Booking)
        .where(
            Booking.station_id == station_id,
            Booking.status.in_(OCCUPYING_STATUSES),
            Booking.end_time > utcnow(),
        )
        .order_by(Booking.start_time)
    )
    current_bookings = [
        StationBookingWindow(
            slot_number=booking.slot_number,
            start_time=booking.start_time.isoformat(),
            end_time=booking.end_time.isoformat(),
            status=booking.status,
        )
        for booking in result.scalars().all()
    ]
    return StationDetailResponse(
        **_directory_entry(station, occupied.get(station_id, 0)),
        current_bookings=current_bookings,
    )


async def get_availability(
    session: AsyncSession, station_id: int, day: date
) -> List[AvailabilitySlot]:
    """Free slots for each UTC hour of day"""
    station = await session.get(Station, station_id)
    if station is None:
        raise StationUnavailable("Station not found")

    day_start = datetime.combine(day, time.min, tzinfo=UTC)
    day_end = day_start + timedelta(days=1)
    result = await session.execute(
        select(Booking.start_time, Booking.end_time).where(
            Booking.station_id == station_id,
            Booking.status.in_(OCCUPYING_STATUSES),
            Booking.start_time < day_end,
            Booking.end_time > day_start,
        )
    )
    windows = result.all()

    slots = []
    for hour in range(24):
        hour_start = day_start + timedelta(hours=hour)
        hour_end = hour_start + timedelta(hours=1)
        busy = sum(
            1
            for start, end in windows
            if windows_overlap(hour_start, hour_end, start, end)
        )
        available = max(0, station.total_slots - busy)
        slots.append(
            AvailabilitySlot(
                time=f"{hour:02d}:00",
                available_slots=available,
                is_available=available > 0,
            )
        )
    return slots


async def get_power_history(
    session: AsyncSession, station_id: int, hours: int = 24
) -> List[PowerHistoryEntry]:
    """Average and peak power per UTC hour over the last `hours` hours"""
    station = await session.get(Station, station_id)
    if station is None:
        raise StationUnavailable("Station not found")

    since = utcnow() - timedelta(hours=hours)
    result = await session.execute(
        select(PowerLog.recorded_at, PowerLog.power_kw)
        .where(PowerLog.station_id == station_id, PowerLog.recorded_at >= since)
        .order_by(PowerLog.recorded_at)
    )

    buckets: Dict[datetime, List[float]] = {}
    for recorded_at, power_kw in result.all():
        hour = recorded_at.replace(minute=0, second=0, microsecond=0)
        buckets.setdefault(hour, []).append(power_kw)

    return [
        PowerHistoryEntry(
            hour=hour.isoformat(),
            avg_power=round(sum(readings) / len(readings), 2),
            peak_power=round(max(readings), 2),
            readings=len(readings),
        )
        for hour, readings in buckets.items()
    ]


async def create_station(session: AsyncSession, data: Dict[str, Any]) -> Station:
    now = utcnow()
    station = Station(**data, status="active", created_at=now, updated_at=now)
    session.add(station)
    await session.commit()
    logger.info(f"Created station {station.id} ({station.name})")
    return station


async def update_station(
    coordinator: BookingCoordinator, station_id: int, changes: Dict[str, Any]
) -> Station:
    """Apply a partial update; total_slots may not drop below a held slot number"""

    async def work(session: AsyncSession) -> Station:
        station = await session.get(Station, station_id, with_for_update=True)
        if station is None:
            raise StationUnavailable("Station not found")

        new_total = changes.get("total_slots")
        if new_total is not None and new_total < station.total_slots:
            result = await session.execute(
                select(func.max(Booking.slot_number)).where(
                    Booking.station_id == station_id,
                    Booking.status.in_(OCCUPYING_STATUSES),
                )
            )
            highest_held = result.scalar_one_or_none()
            if highest_held is not None and highest_held > new_total:
                raise CapacityInUse(
                    f"Slot {highest_held} is held by a pending or active booking"
                )

        for field, value in changes.items():
            setattr(station, field, value)
        station.updated_at = utcnow()
        await session.flush()
        return station

    station = await coordinator.run_transaction(
        "update_station", work, station_id=station_id
    )
    logger.info(f"Updated station {station_id}: {sorted(changes)}")
    return station


async def delete_station(coordinator: BookingCoordinator, station_id: int) -> None:
    """Delete a station and its finished bookings.

    Refused while any booking on the station is pending or active, so no
    booking disappears without having been completed or cancelled first.
    """

    async def work(session: AsyncSession) -> None:
        station = await session.get(Station, station_id, with_for_update=True)
        if station is None:
            raise StationUnavailable("Station not found")

        result = await session.execute(
            select(func.count(Booking.id)).where(
                Booking.station_id == station_id,
                Booking.status.in_(OCCUPYING_STATUSES),
            )
        )
        if result.scalar_one() > 0:
            raise StationInUse()

        await session.execute(delete(PowerLog).where(PowerLog.station_id == station_id))
        await session.execute(delete(Booking).where(Booking.station_id == station_id))
        await session.delete(station)

    await coordinator.run_transaction("delete_station", work, station_id=station_id)
    logger.info(f"Deleted station {station_id}")


async def list_admin_stations(session: AsyncSession) -> List[AdminStationResponse]:
    stations = (
        (await session.execute(select(Station).order_by(Station.name))).scalars().all()
    )
    totals = dict(
        (
            await session.execute(
                select(Booking.station_id, func.count(Booking.id)).group_by(
                    Booking.station_id
                )
            )
        ).all()
    )
    occupied = await _occupied_now(session)
    return [
        AdminStationResponse(
            **station_to_response(station).model_dump(),
            total_bookings=totals.get(station.id, 0),
            current_active=occupied.get(station.id, 0),
        )
        for station in stations
    ]


async def list_admin_bookings(
    session: AsyncSession,
    status: Optional[str] = None,
    station_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = 1,
    limit: int = 50,
) -> AdminBookingsPage:
    """Filtered, paginated booking list; every filter is a bound parameter"""
    filters = []
    if status:
        filters.append(Booking.status == status)
    if station_id is not None:
        filters.append(Booking.station_id == station_id)
    if date_from is not None:
        filters.append(Booking.start_time >= date_from)
    if date_to is not None:
        filters.append(Booking.start_time <= date_to)

    result = await session.execute(
        select(Booking, Station)
        .join(Station, Booking.station_id == Station.id)
        .where(*filters)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    bookings = [
        AdminBookingResponse(
            **booking_to_response(booking).model_dump(),
            station_name=station.name,
            station_address=station.address,
        )
        for booking, station in result.all()
    ]

    total = (
        await session.execute(select(func.count(Booking.id)).where(*filters))
    ).scalar_one()
    return AdminBookingsPage(
        bookings=bookings,
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if limit else 0,
        ),
    )
