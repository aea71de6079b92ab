"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return int(value)


def _env_spot_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.getenv(name)
    if value is None:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    app_name: str = "ParkBot Reservation Engine"
    app_version: str = "1.0.0"
    database_path: Path = Path("data") / "parking.db"
    log_level: str = "INFO"

    # Booking cycle
    timezone: str = "America/Montevideo"
    cutover_weekday: int = 4
    cutover_hour: int = 17
    cutover_minute: int = 0
    fairness_window_minutes: int = 15
    lottery_random_seed: Optional[int] = None

    # Inventory seeded on first start when the spot tables are empty
    initial_flex_spots: tuple[str, ...] = ()
    initial_fixed_spots: tuple[str, ...] = ()

    # Operator
    supervisor_user_id: Optional[str] = None
    admin_token: Optional[str] = None
    admin_session_minutes: int = 480


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Read settings once per process; tests call ``get_settings.cache_clear()``."""
    defaults = Settings()
    return Settings(
        app_name=_env_str("PARKBOT_APP_NAME", defaults.app_name),
        app_version=_env_str("PARKBOT_APP_VERSION", defaults.app_version),
        database_path=Path(_env_str("PARKBOT_DATABASE_PATH", str(defaults.database_path))),
        log_level=_env_str("PARKBOT_LOG_LEVEL", defaults.log_level),
        timezone=_env_str("PARKBOT_TIMEZONE", defaults.timezone),
        cutover_weekday=_env_int("PARKBOT_CUTOVER_WEEKDAY", defaults.cutover_weekday),
        cutover_hour=_env_int("PARKBOT_CUTOVER_HOUR", defaults.cutover_hour),
        cutover_minute=_env_int("PARKBOT_CUTOVER_MINUTE", defaults.cutover_minute),
        fairness_window_minutes=_env_int(
            "PARKBOT_FAIRNESS_WINDOW_MINUTES",
            defaults.fairness_window_minutes,
        ),
        lottery_random_seed=_env_optional_int("PARKBOT_LOTTERY_SEED"),
        initial_flex_spots=_env_spot_list("PARKBOT_FLEX_SPOTS", defaults.initial_flex_spots),
        initial_fixed_spots=_env_spot_list("PARKBOT_FIXED_SPOTS", defaults.initial_fixed_spots),
        supervisor_user_id=os.getenv("SUPERVISOR_USER_ID") or None,
        admin_token=os.getenv("ADMIN_TOKEN") or None,
        admin_session_minutes=_env_int("PARKBOT_ADMIN_SESSION_MINUTES", defaults.admin_session_minutes),
    )
