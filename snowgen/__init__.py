"""Coordinator-free 63-bit Snowflake ID generation."""

from snowgen.core.exceptions import (
    ClockMovedBackwardError,
    ClockStalledError,
    ConfigurationError,
    IdGenerationError,
    InterruptedWaitError,
    SnowflakeError,
    TimestampOverflowError,
)
from snowgen.utils.snowflake import IdGenerator, SnowflakeConfig, SnowflakeParts

__all__ = [
    "ClockMovedBackwardError",
    "ClockStalledError",
    "ConfigurationError",
    "IdGenerationError",
    "IdGenerator",
    "InterruptedWaitError",
    "SnowflakeConfig",
    "SnowflakeError",
    "SnowflakeParts",
    "TimestampOverflowError",
]
