import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class BookingError(Exception):
    """Base class for errors surfaced to API callers"""

    status_code = 500
    code = "BookingError"
    default_message = "Booking operation failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(BookingError):
    status_code = 400
    code = "ValidationError"
    default_message = "Invalid request"


class InvalidWindow(ValidationError):
    code = "InvalidWindow"
    default_message = "end_time must be after start_time"


class StationUnavailable(BookingError):
    status_code = 404
    code = "StationUnavailable"
    default_message = "Station not found or inactive"


class BookingNotFound(BookingError):
    status_code = 404
    code = "BookingNotFound"
    default_message = "Booking not found"


class Forbidden(BookingError):
    # Reported as 404 so other users' bookings stay invisible
    status_code = 404
    code = "Forbidden"
    default_message = "Booking not found"


class NoCapacity(BookingError):
    status_code = 409
    code = "NoCapacity"
    default_message = "No available slots for selected time"


class SlotConflict(BookingError):
    status_code = 409
    code = "SlotConflict"
    default_message = "Requested slot is already booked for selected time"


class NoSlotAvailable(BookingError):
    status_code = 409
    code = "NoSlotAvailable"
    default_message = "No free slot number for selected time"


class InvalidTransition(BookingError):
    status_code = 409
    code = "InvalidTransition"
    default_message = "Booking status transition not allowed"


class CapacityInUse(BookingError):
    status_code = 409
    code = "CapacityInUse"
    default_message = "Cannot reduce total_slots below slots held by bookings"


class StationInUse(BookingError):
    status_code = 409
    code = "StationInUse"
    default_message = "Cannot delete station with pending or active bookings"


class PersistenceError(BookingError):
    status_code = 500
    code = "PersistenceError"
    default_message = "Failed to process booking, please retry"


def error_body(message: str, code: str, errors: Optional[Any] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"detail": message, "code": code}
    if errors is not None:
        body["errors"] = errors
    return body


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{exc.code} on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=exc.status_code, content=error_body(exc.message, exc.code)
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content=error_body("Missing or invalid fields", "ValidationError", errors),
        )
