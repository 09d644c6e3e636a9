"""Centralized application configuration using Pydantic settings."""
from datetime import datetime, time
from functools import lru_cache
from typing import Dict, List, Literal, Optional
from zoneinfo import ZoneInfo

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared across services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default="sqlite:///./lounge.db",
        description="SQLAlchemy database URL. Defaults to local SQLite for development.",
    )
    run_db_migrations: bool = Field(
        default=False,
        description="Whether this service should create/update database tables on startup.",
    )
    jwt_secret: str = Field(default="super-secret", description="JWT signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60, description="Token lifetime in minutes")
    service_api_key: str = Field(default="service-key", description="API key for service-to-service calls")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    default_rate_limit: str = Field(default="30/minute", description="Global rate limiting rule")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")

    availability_cache_ttl: int = Field(default=120, description="TTL (s) for cached slot availability results")
    availability_fail_mode: Literal["closed", "open"] = Field(
        default="closed",
        description="What the availability endpoint reports when the store is unreachable.",
    )
    venue_timezone: Optional[str] = Field(
        default=None,
        description="IANA zone the booking times are expressed in. Server local time when unset.",
    )
    opening_time: time = Field(default=time(11, 0), description="First bookable minute of the day")
    closing_time: time = Field(default=time(23, 0), description="Bookings must end by this time")
    booking_buffer_minutes: int = Field(default=30, description="Lead time before a same-day slot can be booked")
    default_slot_minutes: int = Field(default=60, description="Slot length used when none is requested")

    status_sweeper_enabled: bool = Field(default=False, description="Run the booking status sweeper in-process")
    status_sweep_interval_seconds: int = Field(default=300, description="Seconds between in-process sweeps")
    no_show_tracking_enabled: bool = Field(
        default=False,
        description="Mark bookings without a check-in as no-show once the grace period passes.",
    )
    no_show_grace_minutes: int = Field(default=30, description="Minutes after start before a booking is a no-show")

    member_discount_percentage: int = Field(default=50, description="Discount applied to member session charges")
    coupon_codes: Dict[str, int] = Field(
        default_factory=lambda: {"CUEPHORIA50": 50},
        description="Booking coupon codes mapped to their discount percentage",
    )

    events_enabled: bool = Field(default=False, description="Publish booking events to RabbitMQ")
    rabbitmq_host: str = Field(default="rabbitmq", description="RabbitMQ broker host")
    bookings_queue: str = Field(default="bookings", description="Queue receiving booking events")

    users_service_port: int = 8001
    customers_service_port: int = 8002
    stations_service_port: int = 8003
    bookings_service_port: int = 8004

    def venue_now(self) -> datetime:
        """Naive wall-clock time at the venue, the frame booking dates and times are stored in."""
        if self.venue_timezone:
            return datetime.now(ZoneInfo(self.venue_timezone)).replace(tzinfo=None)
        return datetime.now()


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
