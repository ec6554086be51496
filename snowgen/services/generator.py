"""
Shared Generator Module

Holds the one IdGenerator shared by everything in this process, mirroring how
database clients are kept as module globals. Callers that can own their own
generator should construct an IdGenerator directly; this adapter exists for
code that just needs "the" generator.

Lifetime:
    The shared instance is created by init_generator(), or lazily by the first
    get_generator() call, from the application settings. shutdown_generator()
    interrupts any pending clock drift wait and drops the instance; the next
    get_generator() call builds a fresh one.
"""

import threading
from typing import Optional

from snowgen.core.config import Settings, settings as default_settings
from snowgen.services.logger import setup_logger
from snowgen.utils.snowflake import IdGenerator

# Global generator instance
snowflake_generator: Optional[IdGenerator] = None
_generator_lock = threading.Lock()

logger = setup_logger(__name__)


def build_generator(config: Settings) -> IdGenerator:
    """Builds an IdGenerator from application settings.

    Raises:
        ConfigurationError: If the settings describe an invalid layout.
    """
    return IdGenerator(
        data_center_id=config.DATA_CENTER_ID,
        machine_id=config.MACHINE_ID,
        epoch=config.EPOCH,
        data_center_id_bits=config.DATA_CENTER_ID_BITS,
        machine_id_bits=config.MACHINE_ID_BITS,
        sequence_bits=config.SEQUENCE_BITS,
        max_clock_drift_ms=config.MAX_CLOCK_DRIFT_MS,
        rollover_timeout_ms=config.ROLLOVER_TIMEOUT_MS,
    )


def init_generator(config: Optional[Settings] = None) -> IdGenerator:
    """Creates the shared generator, replacing any existing one."""
    global snowflake_generator

    generator = build_generator(config or default_settings)
    with _generator_lock:
        previous, snowflake_generator = snowflake_generator, generator
    if previous is not None:
        previous.interrupt()
    logger.info("Shared Snowflake generator initialized")
    return generator


def get_generator() -> IdGenerator:
    """Returns the shared generator, creating it from settings on first use."""
    global snowflake_generator

    with _generator_lock:
        if snowflake_generator is None:
            snowflake_generator = build_generator(default_settings)
            logger.info("Shared Snowflake generator initialized lazily")
        return snowflake_generator


def next_id() -> int:
    """Generates an ID from the shared generator."""
    return get_generator().next_id()


def shutdown_generator() -> None:
    """Interrupts pending waits on the shared generator and drops it."""
    global snowflake_generator

    with _generator_lock:
        generator, snowflake_generator = snowflake_generator, None
    if generator is not None:
        generator.interrupt()
        logger.info("Shared Snowflake generator shut down")
