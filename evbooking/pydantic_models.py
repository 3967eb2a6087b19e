from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# Pydantic models for API
class BookingCreateRequest(BaseModel):
    station_id: int
    start_time: datetime
    end_time: datetime
    slot_number: Optional[int] = None


class StatusUpdateRequest(BaseModel):
    status: Literal["active", "completed", "cancelled"]


class AdminStatusUpdateRequest(StatusUpdateRequest):
    reason: Optional[str] = None


class PowerUpdateRequest(BaseModel):
    power_kw: float


class BookingResponse(BaseModel):
    id: int
    station_id: int
    user_id: str
    slot_number: int
    start_time: str
    end_time: str
    total_cost: Decimal
    status: str
    power_consumption: float
    created_at: Optional[str]
    updated_at: Optional[str]


class UserBookingResponse(BookingResponse):
    station_name: str
    station_address: str
    latitude: float
    longitude: float
    pricing_per_hour: Decimal


class PowerUpdateResponse(BaseModel):
    success: bool
    power_kw: float
    booking: BookingResponse


class CancelResponse(BaseModel):
    message: str
    booking: BookingResponse


class StationBookingWindow(BaseModel):
    slot_number: int
    start_time: str
    end_time: str
    status: str


class StationResponse(BaseModel):
    id: int
    name: str
    address: str
    latitude: float
    longitude: float
    total_slots: int
    connector_types: List[str]
    pricing_per_hour: Decimal
    amenities: List[str]
    max_power_kw: Optional[float]
    status: str
    created_at: Optional[str]
    updated_at: Optional[str]


class StationDirectoryEntry(StationResponse):
    occupied_slots: int
    available_slots: int
    distance: Optional[float] = None


class StationDetailResponse(StationDirectoryEntry):
    current_bookings: List[StationBookingWindow]


class AdminStationResponse(StationResponse):
    total_bookings: int
    current_active: int


class AvailabilitySlot(BaseModel):
    time: str
    available_slots: int
    is_available: bool


class PowerHistoryEntry(BaseModel):
    hour: str
    avg_power: float
    peak_power: float
    readings: int


class StationCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    address: str = Field(min_length=1)
    latitude: float
    longitude: float
    total_slots: int = Field(4, ge=1)
    connector_types: List[str] = Field(default_factory=lambda: ["Type 2", "CCS"])
    pricing_per_hour: Decimal = Field(Decimal("25.00"), ge=0)
    amenities: List[str] = Field(default_factory=list)
    max_power_kw: float = 50


class StationUpdateRequest(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    total_slots: Optional[int] = Field(None, ge=1)
    connector_types: Optional[List[str]] = None
    pricing_per_hour: Optional[Decimal] = Field(None, ge=0)
    amenities: Optional[List[str]] = None
    max_power_kw: Optional[float] = None
    status: Optional[Literal["active", "inactive"]] = None


class AdminBookingResponse(BookingResponse):
    station_name: str
    station_address: str


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class AdminBookingsPage(BaseModel):
    bookings: List[AdminBookingResponse]
    pagination: Pagination


def booking_to_response(booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        station_id=booking.station_id,
        user_id=booking.user_id,
        slot_number=booking.slot_number,
        start_time=booking.start_time.isoformat(),
        end_time=booking.end_time.isoformat(),
        total_cost=booking.total_cost,
        status=booking.status,
        power_consumption=booking.power_consumption or 0,
        created_at=_iso(booking.created_at),
        updated_at=_iso(booking.updated_at),
    )


def station_to_response(station) -> StationResponse:
    return StationResponse(
        id=station.id,
        name=station.name,
        address=station.address,
        latitude=station.latitude,
        longitude=station.longitude,
        total_slots=station.total_slots,
        connector_types=station.connector_types or [],
        pricing_per_hour=station.pricing_per_hour,
        amenities=station.amenities or [],
        max_power_kw=station.max_power_kw,
        status=station.status,
        created_at=_iso(station.created_at),
        updated_at=_iso(station.updated_at),
    )
