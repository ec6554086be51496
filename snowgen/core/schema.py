from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from snowgen.core.config import settings


class IdResponse(BaseModel):
    """Response model for a single generated ID.

    Args:
        id (int): The generated Snowflake ID.
    """

    id: int = Field(..., description="Generated Snowflake ID", examples=[7081603546562105345])


class CreateIdBatch(BaseModel):
    """Request model for generating several IDs at once.

    Args:
        count (int): How many IDs to generate.
    """

    count: int = Field(..., description="Number of IDs to generate", examples=[10])

    @field_validator("count")
    @classmethod
    def validate_count(cls, count):
        """Reject batch sizes outside 1..MAX_BATCH_SIZE."""
        if not 1 <= count <= settings.MAX_BATCH_SIZE:
            raise ValueError(f"count must be between 1 and {settings.MAX_BATCH_SIZE}")
        return count


class IdBatchResponse(BaseModel):
    ids: list[int] = Field(..., description="Generated Snowflake IDs, in generation order")


class DecodedId(BaseModel):
    """Fields recovered from a Snowflake ID using this node's bit layout."""

    id: int
    timestamp_delta: int = Field(..., description="Milliseconds since the epoch")
    timestamp: int = Field(..., description="Unix time in milliseconds")
    generated_at: datetime
    data_center_id: int
    machine_id: int
    sequence: int


class NodeInfo(BaseModel):
    """Node identity and bit layout of the running generator."""

    data_center_id: int
    machine_id: int
    epoch: int
    timestamp_bits: int
    data_center_id_bits: int
    machine_id_bits: int
    sequence_bits: int
    max_clock_drift_ms: int
