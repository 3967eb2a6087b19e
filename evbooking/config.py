import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    # Store
    database_url: str = "postgresql+asyncpg://evuser:evpass@db:5432/evcs"

    # Booking transactions
    max_attempts: int = 3
    retry_base_delay: float = 0.05  # seconds, doubled per attempt
    transaction_timeout_seconds: float = 5.0

    # Identity
    role_cache_ttl_seconds: float = 30.0  # 0 disables caching

    # Real-time fan-out
    realtime_enabled: bool = True
    realtime_host: str = "0.0.0.0"  # nosec
    realtime_port: int = 9000
    realtime_send_timeout: float = 5.0  # seconds per subscriber send


def get_settings() -> Settings:
    """Build settings from the environment"""
    defaults = Settings()
    return Settings(
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        max_attempts=int(os.getenv("BOOKING_MAX_ATTEMPTS", defaults.max_attempts)),
        retry_base_delay=float(
            os.getenv("BOOKING_RETRY_BASE_DELAY", defaults.retry_base_delay)
        ),
        transaction_timeout_seconds=float(
            os.getenv(
                "BOOKING_TRANSACTION_TIMEOUT", defaults.transaction_timeout_seconds
            )
        ),
        role_cache_ttl_seconds=float(
            os.getenv("ROLE_CACHE_TTL_SECONDS", defaults.role_cache_ttl_seconds)
        ),
        realtime_enabled=_env_bool("REALTIME_ENABLED", defaults.realtime_enabled),
        realtime_host=os.getenv("REALTIME_HOST", defaults.realtime_host),
        realtime_port=int(os.getenv("REALTIME_PORT", defaults.realtime_port)),
        realtime_send_timeout=float(
            os.getenv("REALTIME_SEND_TIMEOUT", defaults.realtime_send_timeout)
        ),
    )
