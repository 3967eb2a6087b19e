"""
Caller identity.

The upstream identity provider authenticates the request and forwards the
user identifier in the X-User-Id header; it is trusted as-is. The admin role
is a point lookup on users.external_id, cached in-process for
settings.role_cache_ttl_seconds.
"""

from dataclasses import dataclass
import logging
import time
from typing import Dict, Optional, Tuple

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from evbooking.models import User

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Principal:
    user_id: str
    is_admin: bool = False


class RoleCache:
    """Role lookups with a time-to-live; ttl of 0 disables caching"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], ttl: float):
        self.session_factory = session_factory
        self.ttl = ttl
        self._entries: Dict[str, Tuple[float, Optional[str]]] = {}

    def invalidate(self, user_id: Optional[str] = None) -> None:
        if user_id is None:
            self._entries.clear()
        else:
            self._entries.pop(user_id, None)

    async def get_role(self, user_id: str) -> Optional[str]:
        now = time.monotonic()
        cached = self._entries.get(user_id)
        if cached and cached[0] > now:
            return cached[1]

        async with self.session_factory() as session:
            result = await session.execute(
                select(User.role).where(User.external_id == user_id)
            )
            role = result.scalar_one_or_none()

        if self.ttl > 0:
            self._entries[user_id] = (now + self.ttl, role)
        return role


async def get_current_principal(
    request: Request, x_user_id: Optional[str] = Header(None)
) -> Principal:
    """FastAPI dependency resolving the authenticated caller"""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")

    role = await request.app.state.role_cache.get_role(x_user_id)
    return Principal(user_id=x_user_id, is_admin=role == ADMIN_ROLE)


async def require_admin(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    if not principal.is_admin:
        logger.warning(f"Admin access denied for user {principal.user_id}")
        raise HTTPException(status_code=403, detail="Admin access required")
    return principal
