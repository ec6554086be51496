class SnowflakeError(Exception):
    """Base class for every error raised by snowgen."""

    pass


class ConfigurationError(SnowflakeError, ValueError):
    """Raised when a generator is built with an invalid bit layout or node id."""

    pass


class IdGenerationError(SnowflakeError, RuntimeError):
    """Raised when a call to next_id() cannot produce an id.

    The generation state is left exactly as it was before the call.
    """

    pass


class ClockMovedBackwardError(IdGenerationError):
    """Raised when the clock jumped back further than the tolerated drift."""

    def __init__(self, drift_ms: int):
        self.drift_ms = drift_ms
        super().__init__(
            f"Clock moved backwards. Refusing to generate id for {drift_ms} milliseconds"
        )


class ClockStalledError(IdGenerationError):
    """Raised when the clock does not advance after the sequence rolled over."""

    def __init__(self, waited_ms: int):
        self.waited_ms = waited_ms
        super().__init__(
            f"Sequence exhausted and clock did not advance within {waited_ms} milliseconds"
        )


class InterruptedWaitError(IdGenerationError):
    """Raised when a clock drift wait is interrupted."""

    pass


class TimestampOverflowError(IdGenerationError):
    """Raised when the clock lies before the epoch or past the timestamp field."""

    pass
