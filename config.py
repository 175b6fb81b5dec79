import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def get_database_url() -> str:
    # Fail fast if the URL is missing
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise ValueError("DATABASE_URL is not set. Please check your .env file.")
    return url


@dataclass(frozen=True)
class Settings:
    sql_echo: bool = False
    default_duration_minutes: int = 120
    expiry_grace_minutes: int = 15
    occupancy_hold_minutes: int = 120
    # Booking window rules for new and moved reservations
    min_lead_minutes: int = 30
    max_advance_days: int = 30
    max_party_size: int = 12
    upcoming_hours: int = 4
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"


def load_settings() -> Settings:
    origins = os.environ.get("CORS_ORIGINS", "*")
    return Settings(
        sql_echo=_env_bool("SQL_ECHO", False),
        default_duration_minutes=_env_int("DEFAULT_DURATION_MINUTES", 120),
        expiry_grace_minutes=_env_int("EXPIRY_GRACE_MINUTES", 15),
        occupancy_hold_minutes=_env_int("OCCUPANCY_HOLD_MINUTES", 120),
        min_lead_minutes=_env_int("MIN_LEAD_MINUTES", 30),
        max_advance_days=_env_int("MAX_ADVANCE_DAYS", 30),
        max_party_size=_env_int("MAX_PARTY_SIZE", 12),
        upcoming_hours=_env_int("UPCOMING_HOURS", 4),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    )
