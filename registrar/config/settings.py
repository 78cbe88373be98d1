"""
Allocation Engine Settings

Centralized tunables for section provisioning and enrollment balancing.
All values are loaded from environment variables (a local .env is honoured).
"""
import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_int_env(key: str, default: int) -> int:
    """Get an integer value from environment variable, falling back on garbage."""
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_int_list_env(key: str, default: List[int]) -> List[int]:
    """Get a comma separated list of integers (e.g. "1,2,3")."""
    raw = os.getenv(key)
    if not raw:
        return list(default)
    values = []
    for part in raw.split(","):
        part = part.strip()
        if part.isdigit():
            values.append(int(part))
    return values or list(default)


class Settings:
    """
    Settings for the allocation engine.

    To add a new setting:
    1. Add it here as a class attribute
    2. Load it from an environment variable
    3. Read it through the `settings` singleton
    """

    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./registrar.db")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Sizing
    SECTION_TARGET_CAPACITY: int = max(1, get_int_env('SECTION_TARGET_CAPACITY', 30))

    # Floor applied when a caller explicitly asks for provisioning (single course, bulk run)
    SECTION_FORCED_MIN_SECTIONS: int = max(0, get_int_env('SECTION_FORCED_MIN_SECTIONS', 1))
    # Floor applied when only topping up an explicitly selected bucket
    SECTION_TOPUP_MIN_SECTIONS: int = max(0, get_int_env('SECTION_TOPUP_MIN_SECTIONS', 0))

    # Batching
    ALLOCATION_BATCH_SIZE: int = max(1, get_int_env('ALLOCATION_BATCH_SIZE', 200))
    ALLOCATION_YEAR_LEVELS: List[int] = get_int_list_env('ALLOCATION_YEAR_LEVELS', [1, 2, 3])

    # "delete" removes enrollments of reset sections, "detach" keeps them unsectioned
    SECTION_RESET_POLICY: str = os.getenv('SECTION_RESET_POLICY', 'delete').lower()

    # Admin API
    FEATURE_SECTION_ADMIN_API: bool = get_bool_env('FEATURE_SECTION_ADMIN_API', True)

    @classmethod
    def as_dict(cls) -> dict:
        """Get all settings as a dictionary (database URL excluded)."""
        return {
            key: value
            for key, value in cls.__dict__.items()
            if key.isupper() and key != "DATABASE_URL"
        }


# Singleton instance for easy importing
settings = Settings()
