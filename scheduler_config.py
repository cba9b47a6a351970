"""Scheduler configuration loaded from environment variables.

Every field can be overridden with a SCHEDULER_-prefixed variable, e.g.
SCHEDULER_SLOT_CAPACITY=3, or from a .env file in the working directory.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class SchedulerConfig(BaseSettings):
    """School-day grid, capacity and logging settings."""

    # School day grid
    day_start: str = Field(
        default="08:00",
        description="First candidate session start (HH:MM)",
    )
    last_slot_start: str = Field(
        default="14:30",
        description="Last candidate session start (HH:MM)",
    )
    slot_interval_minutes: int = Field(
        default=15,
        description="Spacing between candidate start times",
    )
    day_end_cutoff: str = Field(
        default="15:00",
        description="No session may end after this time (HH:MM)",
    )

    # Occupancy
    slot_capacity: int = Field(
        default=4,
        description="Maximum concurrent sessions for automatic scheduling",
    )

    # Logging
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (for production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = {
        "env_prefix": "SCHEDULER_",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


_config: Optional[SchedulerConfig] = None


def get_config() -> SchedulerConfig:
    """Get the scheduler configuration singleton."""
    global _config
    if _config is None:
        _config = SchedulerConfig()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() re-reads the environment."""
    global _config
    _config = None
