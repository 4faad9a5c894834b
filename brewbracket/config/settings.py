"""
Engine Settings

Centralized configuration for the bracket engine.
All settings are loaded from environment variables.
"""
import os
from typing import List


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_int_env(key: str, default: int) -> int:
    """Get an integer value from environment variable."""
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def get_list_env(key: str, default: List[str]) -> List[str]:
    """Get a comma separated list from environment variable."""
    value = os.getenv(key)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


class EngineSettings:
    """
    Settings for the bracket engine.

    To add a new setting:
    1. Add it here as a class property
    2. Load it from environment variable
    3. Use it in your code
    """

    # Segment plan defaults (minutes)
    DEFAULT_DIAL_IN_MINUTES: int = get_int_env('DEFAULT_DIAL_IN_MINUTES', 10)
    DEFAULT_CAPPUCCINO_MINUTES: int = get_int_env('DEFAULT_CAPPUCCINO_MINUTES', 3)
    DEFAULT_ESPRESSO_MINUTES: int = get_int_env('DEFAULT_ESPRESSO_MINUTES', 2)

    # Station scheduling
    STATION_STAGGER_MINUTES: int = get_int_env('STATION_STAGGER_MINUTES', 10)
    INTER_HEAT_BUFFER_MINUTES: int = get_int_env('INTER_HEAT_BUFFER_MINUTES', 10)
    REQUIRED_STATIONS: int = get_int_env('REQUIRED_STATIONS', 3)
    DEFAULT_ENABLED_STATIONS: List[str] = get_list_env('DEFAULT_ENABLED_STATIONS', ['A', 'B', 'C'])

    # Judging
    JUDGE_ROLE_MODEL: str = os.getenv('JUDGE_ROLE_MODEL', 'SPLIT').upper()
    JUDGES_PER_HEAT: int = get_int_env('JUDGES_PER_HEAT', 3)

    # Feature flags
    FEATURE_AUTO_ASSIGN_JUDGES: bool = get_bool_env('FEATURE_AUTO_ASSIGN_JUDGES', True)
    FEATURE_EVENT_BROADCAST: bool = get_bool_env('FEATURE_EVENT_BROADCAST', True)

    @classmethod
    def as_dict(cls) -> dict:
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if key.isupper()
        }


settings = EngineSettings
