from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from evbooking.auth import Principal, require_admin
from evbooking.coordinator import BookingCoordinator
from evbooking.dependencies import get_coordinator, get_db_session
from evbooking.pydantic_models import (
    AdminBookingsPage,
    AdminStationResponse,
    AdminStatusUpdateRequest,
    BookingResponse,
    StationCreateRequest,
    StationResponse,
    StationUpdateRequest,
    booking_to_response,
    station_to_response,
)
from evbooking.stations import (
    create_station,
    delete_station,
    list_admin_bookings,
    list_admin_stations,
    update_station,
)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/stations", response_model=list[AdminStationResponse])
async def get_admin_stations(
    _: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
) -> list[AdminStationResponse]:
    """Get all stations with booking counts"""
    return await list_admin_stations(session)


@router.post("/stations", response_model=StationResponse, status_code=201)
async def post_station(
    request: StationCreateRequest,
    _: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
) -> StationResponse:
    """Create a new station"""
    station = await create_station(session, request.model_dump())
    return station_to_response(station)


@router.put("/stations/{station_id}", response_model=StationResponse)
async def put_station(
    station_id: int,
    request: StationUpdateRequest,
    _: Principal = Depends(require_admin),
    coordinator: BookingCoordinator = Depends(get_coordinator),
) -> StationResponse:
    """Update a station; only the fields sent are changed"""
    station = await update_station(
        coordinator, station_id, request.model_dump(exclude_none=True)
    )
    return station_to_response(station)


@router.delete("/stations/{station_id}")
async def remove_station(
    station_id: int,
    _: Principal = Depends(require_admin),
    coordinator: BookingCoordinator = Depends(get_coordinator),
) -> dict:
    """Delete a station that has no pending or active bookings"""
    await delete_station(coordinator, station_id)
    return {"message": "Station deleted successfully"}


@router.get("/bookings", response_model=AdminBookingsPage)
async def get_admin_bookings(
    status: Optional[Literal["pending", "active", "completed", "cancelled"]] = None,
    station_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    _: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
) -> AdminBookingsPage:
    """Get all bookings with optional filters"""
    return await list_admin_bookings(
        session,
        status=status,
        station_id=station_id,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )


@router.put("/bookings/{booking_id}/status", response_model=BookingResponse)
async def override_booking_status(
    booking_id: int,
    request: AdminStatusUpdateRequest,
    principal: Principal = Depends(require_admin),
    coordinator: BookingCoordinator = Depends(get_coordinator),
) -> BookingResponse:
    """Change any booking's status as an admin"""
    booking = await coordinator.update_status(
        booking_id,
        principal.user_id,
        request.status,
        admin_override=True,
        reason=request.reason,
    )
    return booking_to_response(booking)
