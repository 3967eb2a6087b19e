"""
Booking event builders and the best-effort emitter.

All events follow this structure:
{
    "type": str,        # EventType value
    "stationId": int,   # station the event is scoped to
    "booking": dict,    # full booking payload after the change
    "timestamp": str,   # ISO 8601
}
Power updates also carry "bookingId" and "powerKw"; admin overrides carry
"reason".
"""

from datetime import UTC, datetime
from enum import Enum
import logging
from typing import Any, Dict, Optional, Protocol

from evbooking.pydantic_models import booking_to_response

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    NEW_BOOKING = "new_booking"
    STATUS_CHANGE = "status_change"
    CANCELLATION = "cancellation"
    ADMIN_STATUS_CHANGE = "admin_status_change"
    POWER_UPDATE = "powerUpdate"


class Notifier(Protocol):
    async def publish(self, topic: str, event: Dict[str, Any]) -> None: ...


class NullNotifier:
    """Notifier that drops every event"""

    async def publish(self, topic: str, event: Dict[str, Any]) -> None:
        return None


def station_topic(station_id: int) -> str:
    return f"station_{station_id}"


def build_booking_event(
    event_type: EventType, booking, reason: Optional[str] = None
) -> Dict[str, Any]:
    event = {
        "type": event_type.value,
        "stationId": booking.station_id,
        "booking": booking_to_response(booking).model_dump(mode="json"),
        "timestamp": datetime.now(UTC).isoformat(),
    }
    if reason is not None:
        event["reason"] = reason
    return event


def build_power_event(booking) -> Dict[str, Any]:
    event = build_booking_event(EventType.POWER_UPDATE, booking)
    event["bookingId"] = booking.id
    event["powerKw"] = booking.power_consumption
    return event


async def emit(notifier: Notifier, topic: str, event: Dict[str, Any]) -> None:
    """Publish an event, logging and swallowing any failure"""
    try:
        await notifier.publish(topic, event)
    except Exception:
        logger.exception(f"Failed to publish {event.get('type')} event to {topic}")
