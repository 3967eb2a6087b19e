"""
Overlap detection for station bookings.

Windows are half-open: [start, end). Two windows overlap iff
start_a < end_b and start_b < end_a, so a booking ending at 11:00 does not
collide with one starting at 11:00.

Every query here runs on the caller's session so that the check and the
eventual write share one transaction.
"""

from datetime import datetime
import logging
from typing import Optional, Set

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from evbooking.errors import StationUnavailable
from evbooking.lifecycle import OCCUPYING_STATUSES
from evbooking.models import Booking, Station

logger = logging.getLogger(__name__)


def windows_overlap(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    return start_a < end_b and start_b < end_a


def _overlap_filter(
    station_id: int,
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[int] = None,
):
    clauses = [
        Booking.station_id == station_id,
        Booking.status.in_(OCCUPYING_STATUSES),
        Booking.start_time < end,
        Booking.end_time > start,
    ]
    if exclude_booking_id is not None:
        clauses.append(Booking.id != exclude_booking_id)
    return clauses


async def load_active_station(
    session: AsyncSession, station_id: int, for_update: bool = False
) -> Station:
    """Load a bookable station, optionally taking a row lock on it"""
    station = await session.get(Station, station_id, with_for_update=for_update)
    if station is None or station.status != "active":
        raise StationUnavailable()
    return station


async def count_overlaps(
    session: AsyncSession,
    station_id: int,
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[int] = None,
) -> int:
    """Number of pending/active bookings of the station overlapping [start, end)"""
    await load_active_station(session, station_id)

    result = await session.execute(
        select(func.count(Booking.id)).where(
            *_overlap_filter(station_id, start, end, exclude_booking_id)
        )
    )
    count = result.scalar_one()
    logger.debug(f"Station {station_id}: {count} overlapping bookings {start}-{end}")
    return count


async def occupied_slots(
    session: AsyncSession,
    station_id: int,
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[int] = None,
) -> Set[int]:
    """Slot numbers held by bookings overlapping [start, end)"""
    result = await session.execute(
        select(Booking.slot_number)
        .where(*_overlap_filter(station_id, start, end, exclude_booking_id))
        .distinct()
    )
    return set(result.scalars().all())
