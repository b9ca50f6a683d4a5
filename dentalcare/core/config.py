import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)

APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./dentalcare.db")
SQL_ECHO = _get_bool(os.getenv("SQL_ECHO"), default=False)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

# Wall-clock zone of every branch; schedule rows and grid labels are local to it.
CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "Asia/Ulaanbaatar")

FOLLOW_UP_SLOT_MINUTES = _get_int(os.getenv("FOLLOW_UP_SLOT_MINUTES"), 30)
FOLLOW_UP_CAPACITY_PER_SLOT = _get_int(os.getenv("FOLLOW_UP_CAPACITY_PER_SLOT"), 2)
FOLLOW_UP_MAX_RANGE_DAYS = _get_int(os.getenv("FOLLOW_UP_MAX_RANGE_DAYS"), 31)

def validate_runtime_config() -> None:
    if FOLLOW_UP_SLOT_MINUTES <= 0:
        raise RuntimeError("FOLLOW_UP_SLOT_MINUTES must be a positive number of minutes.")
    if FOLLOW_UP_CAPACITY_PER_SLOT <= 0:
        raise RuntimeError("FOLLOW_UP_CAPACITY_PER_SLOT must be at least 1.")
    if FOLLOW_UP_MAX_RANGE_DAYS <= 0:
        raise RuntimeError("FOLLOW_UP_MAX_RANGE_DAYS must be at least 1.")
    try:
        ZoneInfo(CLINIC_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise RuntimeError(f"CLINIC_TIMEZONE {CLINIC_TIMEZONE!r} is not a known time zone.") from exc
