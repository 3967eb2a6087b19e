"""
Booking transaction coordinator.

Admission runs as one transaction per attempt:
- the station row is locked (SELECT ... FOR UPDATE) and, inside this process,
  a per-station asyncio.Lock is held for the whole attempt;
- overlapping bookings are counted against total_slots;
- a slot number is picked or validated;
- the cost is computed and the booking inserted as pending;
- the transaction commits, then the station topic is notified.

Serialization failures are retried with backoff up to settings.max_attempts.
Business-rule errors are raised straight away and never retried. When this
module raises, the transaction has been rolled back.
"""

import asyncio
from datetime import UTC, datetime
import logging
import math
import random
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from evbooking.config import Settings, get_settings
from evbooking.conflicts import count_overlaps, load_active_station
from evbooking.errors import (
    BookingError,
    BookingNotFound,
    InvalidWindow,
    NoCapacity,
    PersistenceError,
    ValidationError,
)
from evbooking.lifecycle import (
    OCCUPYING_STATUSES,
    BookingStatus,
    check_ownership,
    validate_transition,
)
from evbooking.models import Booking, PowerLog, Station, utcnow
from evbooking.notifications import (
    EventType,
    Notifier,
    NullNotifier,
    build_booking_event,
    build_power_event,
    emit,
    station_topic,
)
from evbooking.pricing import compute_cost
from evbooking.slots import assign_slot

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SERIALIZATION_SQLSTATES = {"40001", "40P01"}
_SERIALIZATION_SNIPPETS = ("database is locked", "could not serialize access")


def is_serialization_failure(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in _SERIALIZATION_SQLSTATES:
        return True
    message = str(exc).lower()
    return any(snippet in message for snippet in _SERIALIZATION_SNIPPETS)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class StationLocks:
    """In-process lock per station id"""

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}

    def get(self, station_id: int) -> asyncio.Lock:
        lock = self._locks.get(station_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[station_id] = lock
        return lock


class BookingCoordinator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
        locks: Optional[StationLocks] = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier or NullNotifier()
        self.settings = settings or get_settings()
        self.locks = locks or StationLocks()

    def _retry_delay(self, attempt: int) -> float:
        base = self.settings.retry_base_delay * (2 ** (attempt - 1))
        return base + random.uniform(0, self.settings.retry_base_delay)  # nosec

    async def _transact(
        self,
        work: Callable[[AsyncSession], Awaitable[T]],
        station_id: Optional[int],
    ) -> T:
        async def run_once() -> T:
            async with self.session_factory() as session:
                async with session.begin():
                    return await work(session)

        if station_id is None:
            return await run_once()
        async with self.locks.get(station_id):
            return await run_once()

    async def run_transaction(
        self,
        op_name: str,
        work: Callable[[AsyncSession], Awaitable[T]],
        station_id: Optional[int] = None,
    ) -> T:
        """Run work in its own transaction with timeout and bounded retry.

        With station_id, the attempt holds that station's in-process lock.
        """
        attempt = 1
        while True:
            try:
                return await asyncio.wait_for(
                    self._transact(work, station_id),
                    timeout=self.settings.transaction_timeout_seconds,
                )
            except BookingError:
                raise
            except asyncio.TimeoutError:
                logger.error(
                    f"{op_name} exceeded {self.settings.transaction_timeout_seconds}s"
                )
                raise PersistenceError() from None
            except DBAPIError as exc:
                if attempt < self.settings.max_attempts and is_serialization_failure(
                    exc
                ):
                    delay = self._retry_delay(attempt)
                    logger.warning(
                        f"Serialization failure in {op_name}, retrying "
                        f"(attempt {attempt}, delay {delay:.3f}s)"
                    )
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue
                logger.exception(f"Persistence failure in {op_name}")
                raise PersistenceError() from exc
            except SQLAlchemyError as exc:
                logger.exception(f"Persistence failure in {op_name}")
                raise PersistenceError() from exc

    async def create_booking(
        self,
        station_id: int,
        user_id: str,
        start: datetime,
        end: datetime,
        requested_slot: Optional[int] = None,
    ) -> Booking:
        """Admit, price and persist a pending booking"""
        start, end = as_utc(start), as_utc(end)
        if end <= start:
            raise InvalidWindow()

        async def work(session: AsyncSession) -> Booking:
            station = await load_active_station(session, station_id, for_update=True)

            overlapping = await count_overlaps(session, station_id, start, end)
            if overlapping >= station.total_slots:
                logger.warning(
                    f"Station {station_id} full for {start.isoformat()}-"
                    f"{end.isoformat()} ({overlapping}/{station.total_slots})"
                )
                raise NoCapacity()

            slot_number = await assign_slot(
                session, station_id, start, end, station.total_slots, requested_slot
            )
            total_cost = compute_cost(start, end, station.pricing_per_hour)

            now = utcnow()
            booking = Booking(
                station_id=station_id,
                user_id=user_id,
                slot_number=slot_number,
                start_time=start,
                end_time=end,
                total_cost=total_cost,
                status=BookingStatus.PENDING.value,
                power_consumption=0,
                created_at=now,
                updated_at=now,
            )
            session.add(booking)
            await session.flush()
            return booking

        booking = await self.run_transaction(
            "create_booking", work, station_id=station_id
        )
        logger.info(
            f"Created booking {booking.id} on station {station_id} "
            f"slot {booking.slot_number} for user {user_id}"
        )
        await emit(
            self.notifier,
            station_topic(booking.station_id),
            build_booking_event(EventType.NEW_BOOKING, booking),
        )
        return booking

    @staticmethod
    async def _lock_booking(session: AsyncSession, booking_id: int) -> Optional[Booking]:
        return await session.get(Booking, booking_id, with_for_update=True)

    async def update_status(
        self,
        booking_id: int,
        user_id: str,
        status: str,
        admin_override: bool = False,
        reason: Optional[str] = None,
    ) -> Booking:
        """Move a booking along the lifecycle on behalf of its owner or an admin"""

        async def work(session: AsyncSession) -> Booking:
            booking = await self._lock_booking(session, booking_id)
            if booking is None:
                raise BookingNotFound()
            check_ownership(booking, user_id, admin_override)
            target = validate_transition(booking.status, status)

            booking.status = target.value
            booking.updated_at = utcnow()
            if target is BookingStatus.ACTIVE:
                session.add(
                    PowerLog(
                        station_id=booking.station_id,
                        booking_id=booking.id,
                        power_kw=0,
                        recorded_at=booking.updated_at,
                    )
                )
            await session.flush()
            return booking

        booking = await self.run_transaction("update_status", work)
        logger.info(f"Booking {booking_id} is now {booking.status}")

        if admin_override:
            event = build_booking_event(
                EventType.ADMIN_STATUS_CHANGE, booking, reason=reason
            )
        else:
            event = build_booking_event(EventType.STATUS_CHANGE, booking)
        await emit(self.notifier, station_topic(booking.station_id), event)
        return booking

    async def update_power(
        self, booking_id: int, user_id: str, power_kw: float
    ) -> Booking:
        """Record a power reading for an active booking owned by the caller"""
        if not math.isfinite(power_kw) or power_kw < 0:
            raise ValidationError("power_kw must be a non-negative number")

        async def work(session: AsyncSession) -> Booking:
            booking = await self._lock_booking(session, booking_id)
            if (
                booking is None
                or booking.user_id != user_id
                or booking.status != BookingStatus.ACTIVE.value
            ):
                raise BookingNotFound("Active booking not found")

            booking.power_consumption = power_kw
            booking.updated_at = utcnow()
            session.add(
                PowerLog(
                    station_id=booking.station_id,
                    booking_id=booking.id,
                    power_kw=power_kw,
                    recorded_at=booking.updated_at,
                )
            )
            await session.flush()
            return booking

        booking = await self.run_transaction("update_power", work)
        await emit(
            self.notifier,
            station_topic(booking.station_id),
            build_power_event(booking),
        )
        return booking

    async def cancel_booking(self, booking_id: int, user_id: str) -> Booking:
        """Cancel a pending or active booking owned by the caller"""

        async def work(session: AsyncSession) -> Booking:
            booking = await self._lock_booking(session, booking_id)
            if (
                booking is None
                or booking.user_id != user_id
                or booking.status not in OCCUPYING_STATUSES
            ):
                raise BookingNotFound("Booking not found or cannot be cancelled")

            booking.status = validate_transition(
                booking.status, BookingStatus.CANCELLED
            ).value
            booking.updated_at = utcnow()
            await session.flush()
            return booking

        booking = await self.run_transaction("cancel_booking", work)
        logger.info(f"Booking {booking_id} cancelled by user {user_id}")
        await emit(
            self.notifier,
            station_topic(booking.station_id),
            build_booking_event(EventType.CANCELLATION, booking),
        )
        return booking

    async def list_user_bookings(self, user_id: str) -> List[Tuple[Booking, Station]]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Booking, Station)
                .join(Station, Booking.station_id == Station.id)
                .where(Booking.user_id == user_id)
                .order_by(Booking.start_time.desc())
            )
            return [(booking, station) for booking, station in result.all()]
