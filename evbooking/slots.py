from datetime import datetime
from typing import AbstractSet, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from evbooking.conflicts import occupied_slots
from evbooking.errors import NoSlotAvailable, SlotConflict, ValidationError


def pick_slot(
    occupied: AbstractSet[int], total_slots: int, requested_slot: Optional[int] = None
) -> int:
    """Choose a slot number in 1..total_slots not present in occupied.

    A requested slot is validated as-is; otherwise the lowest free number wins.
    """
    if requested_slot is not None:
        if not 1 <= requested_slot <= total_slots:
            raise ValidationError(
                f"slot_number must be between 1 and {total_slots}"
            )
        if requested_slot in occupied:
            raise SlotConflict(f"Slot {requested_slot} is already booked")
        return requested_slot

    for slot in range(1, total_slots + 1):
        if slot not in occupied:
            return slot
    raise NoSlotAvailable()


async def assign_slot(
    session: AsyncSession,
    station_id: int,
    start: datetime,
    end: datetime,
    total_slots: int,
    requested_slot: Optional[int] = None,
) -> int:
    occupied = await occupied_slots(session, station_id, start, end)
    return pick_slot(occupied, total_slots, requested_slot)
