"""
Centralized configuration with environment variable overrides.

Scheduling defaults, storage location, and logging settings live here.
Nothing in the catalog, ledger, or resolver hardcodes these values.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_TIME_SLOTS = "08:00,09:00,10:00,11:00,13:00,14:00,15:00,16:00,17:00,18:00"

# (name, color) pairs used when storage holds no availability types yet
DEFAULT_AVAILABILITY_TYPES: tuple[tuple[str, str], ...] = (
    ("Ensaio Gestante", "#10b981"),
    ("Ensaio Família", "#3b82f6"),
    ("Ensaio Corporativo", "#8b5cf6"),
    ("Reunião Cliente", "#f59e0b"),
)


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _split_list(env_var: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(env_var, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class SchedulingConfig:
    """Defaults applied when slots are generated or listed."""

    default_slot_duration: int = _safe_int("DEFAULT_SLOT_DURATION", "60")
    default_time_slots: tuple[str, ...] = _split_list("DEFAULT_TIME_SLOTS", DEFAULT_TIME_SLOTS)
    upcoming_limit: int = _safe_int("UPCOMING_LIMIT", "10")


@dataclass(frozen=True)
class StorageConfig:
    """Where the JSON-file backend keeps its document."""

    data_path: str = os.getenv("AGENDA_DATA_PATH", "agenda_data.json")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    business_name: str = os.getenv("BUSINESS_NAME", "Lunari Studio")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if config.scheduling.default_slot_duration < 1:
        raise ValueError(
            "DEFAULT_SLOT_DURATION must be >= 1, "
            f"got {config.scheduling.default_slot_duration}"
        )
    if config.scheduling.upcoming_limit < 1:
        raise ValueError(
            f"UPCOMING_LIMIT must be >= 1, got {config.scheduling.upcoming_limit}"
        )
    if not config.scheduling.default_time_slots:
        raise ValueError("DEFAULT_TIME_SLOTS must list at least one time")
    if not config.storage.data_path.strip():
        raise ValueError("AGENDA_DATA_PATH must not be empty")


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info("Configuration loaded for '%s'", config.business_name)
    return config


# Singleton instance
settings = load_config()
