"""Process configuration loaded from RELAY_* environment variables."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

from utilities.constants import (
    BROKER_QUEUE_SIZE,
    HISTORY_SIZE,
    REDIS_CHANNEL,
    REDIS_RETRY_SECONDS,
    SUBSCRIBER_QUEUE_SIZE,
)


class Settings(BaseSettings):
    # Fan-out
    history_size: int = Field(HISTORY_SIZE, ge=1)
    subscriber_queue_size: int = Field(SUBSCRIBER_QUEUE_SIZE, ge=1)
    broker_queue_size: int = Field(BROKER_QUEUE_SIZE, ge=1)

    # "memory" keeps everything in-process, "redis" shares history and
    # live events between processes
    backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    redis_channel: str = REDIS_CHANNEL
    redis_key_prefix: str = "relay:"
    redis_retry_seconds: float = REDIS_RETRY_SECONDS

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = {"env_prefix": "RELAY_"}
