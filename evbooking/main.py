from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from evbooking.admin import router as admin_router
from evbooking.auth import Principal, RoleCache, get_current_principal
from evbooking.config import get_settings
from evbooking.coordinator import BookingCoordinator
from evbooking.database import db_manager
from evbooking.dependencies import get_coordinator, get_db_session
from evbooking.errors import register_error_handlers
from evbooking.pydantic_models import (
    AvailabilitySlot,
    BookingCreateRequest,
    BookingResponse,
    CancelResponse,
    PowerHistoryEntry,
    PowerUpdateRequest,
    PowerUpdateResponse,
    StationDetailResponse,
    StationDirectoryEntry,
    StatusUpdateRequest,
    UserBookingResponse,
    booking_to_response,
)
from evbooking.realtime import StationBroadcaster
from evbooking.stations import (
    get_availability,
    get_power_history,
    get_station_detail,
    list_stations,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    broadcaster = StationBroadcaster(send_timeout=settings.realtime_send_timeout)

    try:
        await db_manager.initialize(settings.database_url)
        await db_manager.create_all()
        logger.info("Database initialized")

        app.state.broadcaster = broadcaster
        app.state.coordinator = BookingCoordinator(
            db_manager.session_factory, notifier=broadcaster, settings=settings
        )
        app.state.role_cache = RoleCache(
            db_manager.session_factory, settings.role_cache_ttl_seconds
        )

        if settings.realtime_enabled:
            await broadcaster.start(settings.realtime_host, settings.realtime_port)
            logger.info("Real-time server started")

    except Exception as e:
        logger.exception(f"Failed to startup the Application: {e}")
        raise

    yield

    # Shutdown
    await broadcaster.close()
    await db_manager.close()


app = FastAPI(
    title="EV Charging Station Booking",
    description="Station directory and slot booking for EV chargers",
    version="1.0.0",
    lifespan=lifespan,
)
register_error_handlers(app)
app.include_router(admin_router)


@app.get("/health")
async def health(request: Request) -> dict:
    """Health check endpoint for app and real-time server"""
    health_status = {"status": "healthy", "services": {}}

    db_health = await db_manager.health_check()
    health_status["services"]["database"] = db_health

    broadcaster = getattr(request.app.state, "broadcaster", None)
    realtime_health = {
        "status": "healthy" if broadcaster and broadcaster.server else "disabled",
        "subscribers": broadcaster.subscriber_count() if broadcaster else 0,
    }
    health_status["services"]["realtime"] = realtime_health

    if db_health["status"] != "healthy":
        health_status["status"] = "unhealthy"

    return health_status


@app.get("/stations", response_model=list[StationDirectoryEntry])
async def get_stations(
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius: float = 50,
    session: AsyncSession = Depends(get_db_session),
) -> list[StationDirectoryEntry]:
    """Get active stations with current availability"""
    return await list_stations(session, lat=lat, lng=lng, radius=radius)


@app.get("/stations/{station_id}", response_model=StationDetailResponse)
async def get_station(
    station_id: int, session: AsyncSession = Depends(get_db_session)
) -> StationDetailResponse:
    """Get one station with its current and upcoming bookings"""
    return await get_station_detail(session, station_id)


@app.get("/stations/{station_id}/availability", response_model=list[AvailabilitySlot])
async def get_station_availability(
    station_id: int,
    day: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_db_session),
) -> list[AvailabilitySlot]:
    """Get hourly slot availability for a station on a date"""
    return await get_availability(session, station_id, day)


@app.get("/stations/{station_id}/power", response_model=list[PowerHistoryEntry])
async def get_station_power(
    station_id: int,
    hours: int = Query(24, ge=1, le=24 * 31),
    session: AsyncSession = Depends(get_db_session),
) -> list[PowerHistoryEntry]:
    """Get hourly average and peak power readings for a station"""
    return await get_power_history(session, station_id, hours)


@app.get("/bookings/my-bookings", response_model=list[UserBookingResponse])
async def get_my_bookings(
    principal: Principal = Depends(get_current_principal),
    coordinator: BookingCoordinator = Depends(get_coordinator),
) -> list[UserBookingResponse]:
    """Get the caller's bookings, latest first"""
    rows = await coordinator.list_user_bookings(principal.user_id)

    return [
        UserBookingResponse(
            **booking_to_response(booking).model_dump(),
            station_name=station.name,
            station_address=station.address,
            latitude=station.latitude,
            longitude=station.longitude,
            pricing_per_hour=station.pricing_per_hour,
        )
        for booking, station in rows
    ]


@app.post("/bookings", response_model=BookingResponse, status_code=201)
async def create_booking(
    request: BookingCreateRequest,
    principal: Principal = Depends(get_current_principal),
    coordinator: BookingCoordinator = Depends(get_coordinator),
) -> BookingResponse:
    """Book a slot at a station for a time window"""
    booking = await coordinator.create_booking(
        station_id=request.station_id,
        user_id=principal.user_id,
        start=request.start_time,
        end=request.end_time,
        requested_slot=request.slot_number,
    )
    return booking_to_response(booking)


@app.put("/bookings/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: int,
    request: StatusUpdateRequest,
    principal: Principal = Depends(get_current_principal),
    coordinator: BookingCoordinator = Depends(get_coordinator),
) -> BookingResponse:
    """Move one of the caller's bookings to a new status"""
    booking = await coordinator.update_status(
        booking_id, principal.user_id, request.status
    )
    return booking_to_response(booking)


@app.put("/bookings/{booking_id}/power", response_model=PowerUpdateResponse)
async def update_booking_power(
    booking_id: int,
    request: PowerUpdateRequest,
    principal: Principal = Depends(get_current_principal),
    coordinator: BookingCoordinator = Depends(get_coordinator),
) -> PowerUpdateResponse:
    """Record power consumption for an active booking"""
    booking = await coordinator.update_power(
        booking_id, principal.user_id, request.power_kw
    )
    return PowerUpdateResponse(
        success=True,
        power_kw=booking.power_consumption,
        booking=booking_to_response(booking),
    )


@app.delete("/bookings/{booking_id}", response_model=CancelResponse)
async def cancel_booking(
    booking_id: int,
    principal: Principal = Depends(get_current_principal),
    coordinator: BookingCoordinator = Depends(get_coordinator),
) -> CancelResponse:
    """Cancel a pending or active booking"""
    booking = await coordinator.cancel_booking(booking_id, principal.user_id)
    return CancelResponse(
        message="Booking cancelled successfully",
        booking=booking_to_response(booking),
    )


@app.get("/api")
async def api_info():
    """API information endpoint"""
    return {
        "message": "EV Charging Station Booking API",
        "version": "1.0.0",
        "endpoints": {
            "health": "/health",
            "stations": "/stations",
            "bookings": "/bookings",
            "my_bookings": "/bookings/my-bookings",
            "admin": "/admin",
            "docs": "/docs",
        },
    }
