from enum import Enum
from typing import Dict, FrozenSet

from evbooking.errors import Forbidden, InvalidTransition


class BookingStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses that hold a slot
OCCUPYING_STATUSES = (BookingStatus.PENDING.value, BookingStatus.ACTIVE.value)

ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.ACTIVE, BookingStatus.CANCELLED}),
    BookingStatus.ACTIVE: frozenset(
        {BookingStatus.COMPLETED, BookingStatus.CANCELLED}
    ),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    try:
        return BookingStatus(target) in ALLOWED_TRANSITIONS[BookingStatus(current)]
    except ValueError:
        return False


def validate_transition(current: str, target: str) -> BookingStatus:
    """Return the target status or raise InvalidTransition"""
    if not can_transition(current, target):
        raise InvalidTransition(f"Cannot change booking from {current} to {target}")
    return BookingStatus(target)


def check_ownership(booking, user_id: str, admin_override: bool = False) -> None:
    if admin_override:
        return
    if booking.user_id != user_id:
        raise Forbidden()
