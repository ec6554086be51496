from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENV: str = "development"
    EPOCH: int = 1380556800000
    DATA_CENTER_ID_BITS: int = 5
    MACHINE_ID_BITS: int = 5
    SEQUENCE_BITS: int = 12
    # Derived from the host when unset
    DATA_CENTER_ID: Optional[int] = None
    MACHINE_ID: Optional[int] = None
    MAX_CLOCK_DRIFT_MS: int = 5
    ROLLOVER_TIMEOUT_MS: int = 1000
    MAX_BATCH_SIZE: int = 1000

    class Config:
        env_file = ".env"
        env_prefix = "SNOWFLAKE_"


settings = Settings()
