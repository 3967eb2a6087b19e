import logging
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from evbooking.config import get_settings

logger = logging.getLogger(__name__)

Base = declarative_base()


class DatabaseManager:
    """Owns the async engine and the session factory of the booking store.

    The URL is resolved on initialize(): an explicit argument wins, then the
    one given at construction, then DATABASE_URL from the settings.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    async def initialize(self, database_url: Optional[str] = None):
        self.database_url = (
            database_url or self.database_url or get_settings().database_url
        )
        try:
            self.engine = create_async_engine(self.database_url)
        except Exception:
            logger.exception(f"Cannot create engine for {self.database_url}")
            raise
        # Committed rows stay readable after the coordinator returns them
        self.session_factory = async_sessionmaker(
            bind=self.engine, expire_on_commit=False
        )

    async def create_all(self):
        """Create missing tables"""
        if self.engine is None:
            raise RuntimeError("Database not initialized")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def health_check(self) -> dict:
        if self.engine is None:
            return {"status": "error", "message": "Database not initialized"}
        try:
            async with self.engine.connect() as conn:
                await conn.scalar(text("SELECT 1"))
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return {"status": "error", "message": f"Database connection failed: {e!s}"}
        return {"status": "healthy", "message": "Database connection successful"}

    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield one session, rolled back if the caller raises"""
        if self.session_factory is None:
            raise RuntimeError("Database not initialized")

        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def close(self):
        if self.engine is not None:
            await self.engine.dispose()
        self.engine = None
        self.session_factory = None


db_manager = DatabaseManager()
