from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

DEFAULT_MIN_QUEUE_SIZE = 20
DEFAULT_MAX_QUEUE_ITEMS = 50
DEFAULT_QUEUE_TTL_SECONDS = 15 * 60

MAX_MIN_QUEUE_SIZE = 200
MAX_MAX_QUEUE_ITEMS = 200
MAX_QUEUE_TTL_SECONDS = 24 * 60 * 60


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime.

    Keeps datetimes naive so they stay compatible with SQLite
    (which doesn't store tz info).
    """
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _bounded(value: int, default: int, cap: int) -> int:
    if value <= 0:
        return default
    return min(value, cap)


class Settings(BaseSettings):
    app_name: str = "Adaptive Practice Scheduler"
    database_url: str = (
        f"sqlite+aiosqlite:///{Path(__file__).resolve().parent.parent / 'data' / 'practice_scheduler.db'}"
    )
    adaptive_queue_enabled: bool = False
    adaptive_queue_min_size: int = DEFAULT_MIN_QUEUE_SIZE
    adaptive_queue_max_items: int = DEFAULT_MAX_QUEUE_ITEMS
    adaptive_queue_ttl_seconds: int = DEFAULT_QUEUE_TTL_SECONDS
    max_write_retries: int = 3
    read_timeout_seconds: float = 10.0
    job_alert_webhook_url: str | None = None
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]
    debug: bool = False

    model_config = {"env_prefix": "PRACTICE_", "env_file": ".env"}

    @field_validator("adaptive_queue_min_size")
    @classmethod
    def _cap_min_size(cls, value: int) -> int:
        return _bounded(value, DEFAULT_MIN_QUEUE_SIZE, MAX_MIN_QUEUE_SIZE)

    @field_validator("adaptive_queue_max_items")
    @classmethod
    def _cap_max_items(cls, value: int) -> int:
        return _bounded(value, DEFAULT_MAX_QUEUE_ITEMS, MAX_MAX_QUEUE_ITEMS)

    @field_validator("adaptive_queue_ttl_seconds")
    @classmethod
    def _cap_ttl(cls, value: int) -> int:
        return _bounded(value, DEFAULT_QUEUE_TTL_SECONDS, MAX_QUEUE_TTL_SECONDS)


@dataclass(frozen=True)
class SchedulerConfig:
    """Scheduler knobs, read once per request or run and passed down explicitly."""

    adaptive_enabled: bool = False
    min_queue_size: int = DEFAULT_MIN_QUEUE_SIZE
    max_queue_items: int = DEFAULT_MAX_QUEUE_ITEMS
    queue_ttl: timedelta = timedelta(seconds=DEFAULT_QUEUE_TTL_SECONDS)
    max_write_retries: int = 3

    @classmethod
    def from_settings(cls, source: Settings) -> "SchedulerConfig":
        return cls(
            adaptive_enabled=source.adaptive_queue_enabled,
            min_queue_size=source.adaptive_queue_min_size,
            max_queue_items=source.adaptive_queue_max_items,
            queue_ttl=timedelta(seconds=source.adaptive_queue_ttl_seconds),
            max_write_retries=max(1, source.max_write_retries),
        )


settings = Settings()
