from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from evbooking.coordinator import BookingCoordinator
from evbooking.database import db_manager


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions"""
    async for session in db_manager.get_session():
        yield session


def get_coordinator(request: Request) -> BookingCoordinator:
    """FastAPI dependency for the booking coordinator built at startup"""
    return request.app.state.coordinator
