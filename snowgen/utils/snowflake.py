"""
Snowflake ID Generator Module

A configurable implementation of the Snowflake algorithm for generating unique,
distributed, and time-ordered 63-bit identifiers without a central coordinator.

Algorithm Overview:
    With the standard layout an ID is packed as follows:

    |1 bit|         41 bits         |  5 bits  |  5 bits  |  12 bits  |
    |sign |   timestamp delta       |  dc id   | machine  | sequence  |
    | 0   | milliseconds since epoch|  0-31    |  0-31    |  0-4095   |

    - Sign bit: Always 0 (positive number)
    - Timestamp: 41 bits = ~69 years of milliseconds from a custom epoch
    - Data center ID and machine ID together form the node identity
    - Sequence: per-millisecond counter for the same node identity

    The data center, machine and sequence widths are configurable as long as
    the four fields fit in 63 bits.

Clock Considerations:
    - A backward clock jump up to ``max_clock_drift_ms`` is absorbed by waiting
      it out; anything larger raises ClockMovedBackwardError.
    - When the sequence space of a millisecond is exhausted the generator spins
      until the clock advances, bounded by ``rollover_timeout_ms``.

Sequence Rollover Reseed:
    After a rollover the sequence restarts at a random value in [0, 3) instead
    of 0. A process restarted within the same millisecond is then less likely
    to replay the ids of its predecessor. The sequence therefore does not
    start at 0 in every millisecond.

Thread Safety:
    - A single threading.Lock guards the generation state
    - Configuration objects are immutable and swapped whole under that lock

Uniqueness:
    Ids are unique per (timestamp, node identity, sequence). Global uniqueness
    requires that no two live generators share a node identity.
"""

import dataclasses
import random
import threading
import time
from datetime import datetime, timezone
from typing import Callable, NamedTuple, Optional

from snowgen.core.exceptions import (
    ClockMovedBackwardError,
    ClockStalledError,
    ConfigurationError,
    InterruptedWaitError,
    TimestampOverflowError,
)
from snowgen.services.logger import setup_logger
from snowgen.services.node_identity import HostNodeIdentityProvider

logger = setup_logger(__name__)

TOTAL_BITS = 63
DEFAULT_EPOCH = 1380556800000
DEFAULT_TIMESTAMP_BITS = 41
DEFAULT_DATA_CENTER_ID_BITS = 5
DEFAULT_MACHINE_ID_BITS = 5
DEFAULT_SEQUENCE_BITS = 12
DEFAULT_MAX_CLOCK_DRIFT_MS = 5
DEFAULT_ROLLOVER_TIMEOUT_MS = 1000

# Sequence rollover reseed: a new millisecond starts at randrange(ROLLOVER_RESEED_RANGE)
ROLLOVER_RESEED_RANGE = 3

# Reserved node id used when host derivation fails
FALLBACK_NODE_ID = 1


def current_millis() -> int:
    """Returns the current wall clock time in milliseconds."""
    return int(time.time() * 1000)


class SnowflakeParts(NamedTuple):
    """The fields of a decoded Snowflake ID."""

    timestamp_delta: int
    data_center_id: int
    machine_id: int
    sequence: int
    epoch: int

    @property
    def timestamp(self) -> int:
        """Absolute generation time in milliseconds since the Unix epoch."""
        return self.epoch + self.timestamp_delta

    @property
    def generated_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)


@dataclasses.dataclass(frozen=True)
class SnowflakeConfig:
    """Validated bit layout and node identity of a generator.

    Derived shifts and masks are computed once in ``__post_init__``. To change
    a layout build a new instance, e.g. with ``dataclasses.replace``.

    Raises:
        ConfigurationError: If the bit widths overflow 63 bits, a width or the
            drift tolerance is negative, or a node id is out of range.
    """

    data_center_id: int = 0
    machine_id: int = 0
    epoch: int = DEFAULT_EPOCH
    data_center_id_bits: int = DEFAULT_DATA_CENTER_ID_BITS
    machine_id_bits: int = DEFAULT_MACHINE_ID_BITS
    sequence_bits: int = DEFAULT_SEQUENCE_BITS
    max_clock_drift_ms: int = DEFAULT_MAX_CLOCK_DRIFT_MS
    rollover_timeout_ms: int = DEFAULT_ROLLOVER_TIMEOUT_MS
    timestamp_bits: int = DEFAULT_TIMESTAMP_BITS

    max_sequence: int = dataclasses.field(init=False, repr=False)
    max_data_center_id: int = dataclasses.field(init=False, repr=False)
    max_machine_id: int = dataclasses.field(init=False, repr=False)
    max_timestamp_delta: int = dataclasses.field(init=False, repr=False)
    timestamp_shift: int = dataclasses.field(init=False, repr=False)
    data_center_id_shift: int = dataclasses.field(init=False, repr=False)
    machine_id_shift: int = dataclasses.field(init=False, repr=False)

    def __post_init__(self):
        widths = {
            "timestamp_bits": self.timestamp_bits,
            "data_center_id_bits": self.data_center_id_bits,
            "machine_id_bits": self.machine_id_bits,
            "sequence_bits": self.sequence_bits,
        }
        for name, width in widths.items():
            if width < 0:
                raise ConfigurationError(f"{name} must not be negative, got {width}")
        if sum(widths.values()) > TOTAL_BITS:
            raise ConfigurationError(
                f"The sum of bits should not be over {TOTAL_BITS}, got {sum(widths.values())}"
            )

        if self.max_clock_drift_ms < 0:
            raise ConfigurationError("max_clock_drift_ms must not be negative")
        if self.rollover_timeout_ms <= 0:
            raise ConfigurationError("rollover_timeout_ms must be positive")

        max_data_center_id = (1 << self.data_center_id_bits) - 1
        max_machine_id = (1 << self.machine_id_bits) - 1
        if not 0 <= self.data_center_id <= max_data_center_id:
            raise ConfigurationError(
                f"Data center ID must be between 0 and {max_data_center_id}"
            )
        if not 0 <= self.machine_id <= max_machine_id:
            raise ConfigurationError(
                f"Machine ID must be between 0 and {max_machine_id}"
            )

        derived = {
            "max_sequence": (1 << self.sequence_bits) - 1,
            "max_data_center_id": max_data_center_id,
            "max_machine_id": max_machine_id,
            "max_timestamp_delta": (1 << self.timestamp_bits) - 1,
            "timestamp_shift": self.data_center_id_bits
            + self.machine_id_bits
            + self.sequence_bits,
            "data_center_id_shift": self.machine_id_bits + self.sequence_bits,
            "machine_id_shift": self.sequence_bits,
        }
        for name, value in derived.items():
            object.__setattr__(self, name, value)

    @property
    def node_id_bits(self) -> int:
        return self.data_center_id_bits + self.machine_id_bits

    def pack(self, timestamp: int, sequence: int) -> int:
        """Packs an absolute millisecond timestamp and a sequence into an ID."""
        return (
            ((timestamp - self.epoch) << self.timestamp_shift)
            | (self.data_center_id << self.data_center_id_shift)
            | (self.machine_id << self.machine_id_shift)
            | sequence
        )

    def decode(self, snowflake_id: int) -> SnowflakeParts:
        """Splits an ID produced with this layout back into its fields.

        Args:
            snowflake_id: A non-negative 63-bit ID.

        Returns:
            The decoded fields.

        Raises:
            ValueError: If the ID is negative or wider than 63 bits.
        """
        if not 0 <= snowflake_id < (1 << TOTAL_BITS):
            raise ValueError(f"Not a {TOTAL_BITS}-bit Snowflake ID: {snowflake_id}")

        return SnowflakeParts(
            timestamp_delta=(snowflake_id >> self.timestamp_shift)
            & self.max_timestamp_delta,
            data_center_id=(snowflake_id >> self.data_center_id_shift)
            & self.max_data_center_id,
            machine_id=(snowflake_id >> self.machine_id_shift) & self.max_machine_id,
            sequence=snowflake_id & self.max_sequence,
            epoch=self.epoch,
        )


def _resolve_node_id(
    explicit: Optional[int], derive: Callable[[int], int], max_value: int, kind: str
) -> int:
    """Returns the explicit id, or a derived one that falls back when derivation fails."""
    if explicit is not None:
        return explicit

    fallback = FALLBACK_NODE_ID & max_value
    try:
        derived = derive(max_value)
    except Exception as e:
        logger.warning("Could not derive %s, using %d: %s", kind, fallback, e)
        return fallback

    if not isinstance(derived, int) or not 0 <= derived <= max_value:
        logger.warning(
            "Derived %s %r is outside 0-%d, using %d", kind, derived, max_value, fallback
        )
        return fallback
    return derived


class IdGenerator:
    """A thread-safe Snowflake ID generator.

    Attributes:
        config: The active SnowflakeConfig.
    """

    def __init__(
        self,
        config: Optional[SnowflakeConfig] = None,
        *,
        data_center_id: Optional[int] = None,
        machine_id: Optional[int] = None,
        epoch: int = DEFAULT_EPOCH,
        data_center_id_bits: int = DEFAULT_DATA_CENTER_ID_BITS,
        machine_id_bits: int = DEFAULT_MACHINE_ID_BITS,
        sequence_bits: int = DEFAULT_SEQUENCE_BITS,
        max_clock_drift_ms: int = DEFAULT_MAX_CLOCK_DRIFT_MS,
        rollover_timeout_ms: int = DEFAULT_ROLLOVER_TIMEOUT_MS,
        identity_provider=None,
        clock: Callable[[], int] = current_millis,
    ):
        """Initializes a new generator.

        Either pass a ready SnowflakeConfig, or the individual layout values.
        A data center or machine id left as None is derived by
        ``identity_provider`` (the host provider by default).

        Args:
            config: A complete configuration. Other layout arguments are ignored.
            data_center_id: Data center id, or None to derive it.
            machine_id: Machine id, or None to derive it.
            epoch: The custom epoch in milliseconds.
            data_center_id_bits: Width of the data center id field.
            machine_id_bits: Width of the machine id field.
            sequence_bits: Width of the sequence field.
            max_clock_drift_ms: Largest backward clock jump that is waited out.
            rollover_timeout_ms: Bound on the wait for the next millisecond
                after the sequence rolled over.
            identity_provider: Object with ``data_center_id(max_value)`` and
                ``machine_id(max_value, data_center_id)`` methods.
            clock: Callable returning the current time in milliseconds.

        Raises:
            ConfigurationError: If the layout or the node ids are invalid.
        """
        if config is None:
            if data_center_id is None or machine_id is None:
                if identity_provider is None:
                    identity_provider = HostNodeIdentityProvider()
                # Widths are checked before ids are derived from them
                if min(data_center_id_bits, machine_id_bits) < 0:
                    raise ConfigurationError("Bit widths must not be negative")

                data_center_id = _resolve_node_id(
                    data_center_id,
                    identity_provider.data_center_id,
                    (1 << data_center_id_bits) - 1,
                    "data center ID",
                )
                machine_id = _resolve_node_id(
                    machine_id,
                    lambda max_value: identity_provider.machine_id(
                        max_value, data_center_id
                    ),
                    (1 << machine_id_bits) - 1,
                    "machine ID",
                )

            config = SnowflakeConfig(
                data_center_id=data_center_id,
                machine_id=machine_id,
                epoch=epoch,
                data_center_id_bits=data_center_id_bits,
                machine_id_bits=machine_id_bits,
                sequence_bits=sequence_bits,
                max_clock_drift_ms=max_clock_drift_ms,
                rollover_timeout_ms=rollover_timeout_ms,
            )

        self._config = config
        self._clock = clock
        self._lock = threading.Lock()
        self._interrupted = threading.Event()
        self._wait_lock = threading.Lock()
        self._waiting = False
        self._last_timestamp = -1
        self._last_sequence = 0

        logger.info(
            "Snowflake generator ready: data_center_id=%d machine_id=%d layout=%d/%d/%d/%d",
            config.data_center_id,
            config.machine_id,
            config.timestamp_bits,
            config.data_center_id_bits,
            config.machine_id_bits,
            config.sequence_bits,
        )

    @property
    def config(self) -> SnowflakeConfig:
        return self._config

    @property
    def data_center_id(self) -> int:
        return self._config.data_center_id

    @property
    def machine_id(self) -> int:
        return self._config.machine_id

    def _wait_out_drift(self, drift: int) -> None:
        """Blocks for ``drift`` milliseconds unless interrupt() is called."""
        logger.warning("Clock moved backwards by %d ms, waiting it out", drift)
        with self._wait_lock:
            self._interrupted.clear()
            self._waiting = True
        try:
            interrupted = self._interrupted.wait(drift / 1000)
        finally:
            with self._wait_lock:
                self._waiting = False
        if interrupted:
            raise InterruptedWaitError(
                f"Wait for {drift} ms of clock drift was interrupted"
            )

    def _wait_for_next_millis(self, last_timestamp: int, timeout_ms: int) -> int:
        """Spins until the clock passes ``last_timestamp``.

        Raises:
            ClockStalledError: If the clock has not advanced within timeout_ms.
        """
        deadline = time.monotonic() + timeout_ms / 1000
        timestamp = self._clock()
        while timestamp <= last_timestamp:
            if time.monotonic() >= deadline:
                logger.error("Clock stalled at %d after sequence rollover", timestamp)
                raise ClockStalledError(timeout_ms)
            timestamp = self._clock()
        return timestamp

    def _next_locked(self, config: SnowflakeConfig) -> int:
        timestamp = self._clock()

        if timestamp < self._last_timestamp:
            drift = self._last_timestamp - timestamp
            if drift > config.max_clock_drift_ms:
                logger.error(
                    "Clock moved backwards by %d ms, tolerance is %d ms",
                    drift,
                    config.max_clock_drift_ms,
                )
                raise ClockMovedBackwardError(drift)

            self._wait_out_drift(drift)
            # Still behind after the wait: reuse the last millisecond
            timestamp = max(self._clock(), self._last_timestamp)

        sequence = (self._last_sequence + 1) & config.max_sequence
        if sequence == 0:
            if timestamp == self._last_timestamp:
                logger.debug("Sequence exhausted at %d, waiting for next ms", timestamp)
                timestamp = self._wait_for_next_millis(
                    self._last_timestamp, config.rollover_timeout_ms
                )
            sequence = random.randrange(ROLLOVER_RESEED_RANGE) & config.max_sequence

        delta = timestamp - config.epoch
        if not 0 <= delta <= config.max_timestamp_delta:
            raise TimestampOverflowError(
                f"Timestamp {timestamp} does not fit {config.timestamp_bits} bits"
                f" from epoch {config.epoch}"
            )

        self._last_timestamp = timestamp
        self._last_sequence = sequence
        return config.pack(timestamp, sequence)

    def next_id(self) -> int:
        """Generates a new unique Snowflake ID.

        Returns:
            A non-negative 63-bit ID.

        Raises:
            ClockMovedBackwardError: If the clock moved back past the tolerance.
            ClockStalledError: If the clock froze after a sequence rollover.
            InterruptedWaitError: If a drift wait was interrupted.
            TimestampOverflowError: If the clock is outside the epoch's range.
        """
        with self._lock:
            return self._next_locked(self._config)

    def next_ids(self, count: int) -> list[int]:
        """Generates ``count`` IDs in one go, holding the lock throughout.

        If a call fails part way no IDs are returned, although the ones
        already produced are consumed.
        """
        if count < 0:
            raise ValueError("count must not be negative")
        with self._lock:
            config = self._config
            return [self._next_locked(config) for _ in range(count)]

    def decode(self, snowflake_id: int) -> SnowflakeParts:
        return self._config.decode(snowflake_id)

    def reconfigure(self, **changes) -> SnowflakeConfig:
        """Replaces the configuration with a validated copy carrying ``changes``.

        Raises:
            ConfigurationError: If the new configuration is invalid; the
                current one stays active.
        """
        with self._lock:
            self._config = dataclasses.replace(self._config, **changes)
            logger.info("Snowflake generator reconfigured: %r", self._config)
            return self._config

    def interrupt(self) -> bool:
        """Aborts a clock drift wait that is currently pending.

        Returns:
            True if a waiting call was woken, False if nothing was waiting.
        """
        with self._wait_lock:
            if not self._waiting:
                return False
            self._interrupted.set()
            return True
