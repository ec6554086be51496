"""
FastAPI Snowflake ID Service

A small HTTP service that hands out Snowflake IDs from the process-wide
generator. Each running instance must be configured with its own node identity
(data center id + machine id); the service does not coordinate with its peers.

Key Features:
    - Single and batch ID generation
    - Decoding of IDs back into timestamp, node identity and sequence
    - Clock drift errors surfaced as 503 with a Retry-After hint

Dependencies:
    - FastAPI: Web framework and automatic API documentation
    - pydantic-settings: Environment configuration (SNOWFLAKE_* variables)
    - Custom utilities: Snowflake ID generator
"""

import math
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Path, status
from fastapi.middleware.cors import CORSMiddleware

from snowgen.core.exceptions import (
    ClockMovedBackwardError,
    ClockStalledError,
    InterruptedWaitError,
    TimestampOverflowError,
)
from snowgen.core.schema import CreateIdBatch, DecodedId, IdBatchResponse, IdResponse, NodeInfo
from snowgen.services.generator import get_generator, init_generator, shutdown_generator
from snowgen.services.logger import setup_logger
from snowgen.utils.snowflake import TOTAL_BITS, IdGenerator

logger = setup_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler that owns the shared Snowflake generator.

    The generator is built from settings at startup, so an invalid bit layout or
    node id stops the service before it accepts requests. At shutdown any
    pending clock drift wait is interrupted.

    Args:
        app (FastAPI): The FastAPI application instance

    Yields:
        None: Control to the application during its lifetime
    """
    logger.info("Starting Snowflake ID service...")
    init_generator()

    yield

    logger.info("Application is shutting down.")
    shutdown_generator()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _generate(generator: IdGenerator, count: int) -> list[int]:
    """Runs the generator and translates its errors into HTTP errors."""
    try:
        return generator.next_ids(count)
    except ClockMovedBackwardError as e:
        logger.error("ID generation refused: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
            headers={"Retry-After": str(max(1, math.ceil(e.drift_ms / 1000)))},
        )
    except ClockStalledError as e:
        logger.error("ID generation stalled: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
            headers={"Retry-After": "1"},
        )
    except InterruptedWaitError as e:
        logger.warning("ID generation interrupted: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="ID generation interrupted",
        )
    except TimestampOverflowError as e:
        logger.error("Clock outside the epoch range: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="ID generation failed",
        )


@app.get(
    "/ids",
    response_model=IdResponse,
    summary="Generate a Snowflake ID",
    description="""
    Generate one unique, time-ordered 63-bit ID.

    IDs are unique per node identity. If the host clock moved backwards further
    than the configured tolerance the request fails with 503 and a Retry-After
    header.
    """,
    responses={
        503: {
            "description": "Clock moved backwards or stalled",
            "content": {
                "application/json": {
                    "example": {
                        "detail": "Clock moved backwards. Refusing to generate id for 12 milliseconds"
                    }
                }
            },
        },
    },
)
def create_id(generator: IdGenerator = Depends(get_generator)):
    """Generate a single Snowflake ID.

    Args:
        generator (IdGenerator): The shared generator.

    Returns:
        IdResponse: The generated ID.
    """
    (snowflake_id,) = _generate(generator, 1)
    return IdResponse(id=snowflake_id)


@app.post(
    "/ids/batch",
    status_code=status.HTTP_201_CREATED,
    response_model=IdBatchResponse,
    summary="Generate Snowflake IDs in batch",
    description="""
    Generate several IDs in one request. The IDs are produced back to back and
    returned in generation order. Either all requested IDs are returned or the
    request fails.
    """,
)
def create_ids(
    batch: CreateIdBatch, generator: IdGenerator = Depends(get_generator)
):
    """Generate a batch of Snowflake IDs.

    Args:
        batch (CreateIdBatch): The requested batch size.
        generator (IdGenerator): The shared generator.

    Returns:
        IdBatchResponse: The generated IDs.
    """
    return IdBatchResponse(ids=_generate(generator, batch.count))


@app.get(
    "/ids/{snowflake_id}/decode",
    response_model=DecodedId,
    summary="Decode a Snowflake ID",
    description="""
    Split an ID into its timestamp, data center id, machine id and sequence
    using this node's bit layout. IDs produced with a different layout decode
    to meaningless fields.
    """,
)
def decode_id(
    snowflake_id: int = Path(
        ...,
        ge=0,
        lt=1 << TOTAL_BITS,
        description="A Snowflake ID",
        examples=[7081603546562105345],
    ),
    generator: IdGenerator = Depends(get_generator),
):
    """Decode a Snowflake ID into its fields.

    Args:
        snowflake_id (int): The ID to decode.
        generator (IdGenerator): The shared generator, whose layout is used.

    Returns:
        DecodedId: The timestamp, node identity and sequence of the ID.
    """
    parts = generator.decode(snowflake_id)
    return DecodedId(
        id=snowflake_id,
        timestamp_delta=parts.timestamp_delta,
        timestamp=parts.timestamp,
        generated_at=parts.generated_at,
        data_center_id=parts.data_center_id,
        machine_id=parts.machine_id,
        sequence=parts.sequence,
    )


@app.get("/node", response_model=NodeInfo, summary="Describe this node")
def get_node(generator: IdGenerator = Depends(get_generator)):
    """Return the node identity and bit layout of the running generator."""
    config = generator.config
    return NodeInfo(
        data_center_id=config.data_center_id,
        machine_id=config.machine_id,
        epoch=config.epoch,
        timestamp_bits=config.timestamp_bits,
        data_center_id_bits=config.data_center_id_bits,
        machine_id_bits=config.machine_id_bits,
        sequence_bits=config.sequence_bits,
        max_clock_drift_ms=config.max_clock_drift_ms,
    )
