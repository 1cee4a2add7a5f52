"""
Pydantic configuration model for persistq.

    QueueConfig(target="jobs.db", batch_size=10)
    QueueConfig.from_env()      # PERSISTQ_TARGET / PERSISTQ_BATCH_SIZE
"""

import os

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from persistq.domain.errors import ConfigurationError

ENV_TARGET = "PERSISTQ_TARGET"
ENV_BATCH_SIZE = "PERSISTQ_BATCH_SIZE"

DEFAULT_BATCH_SIZE = 10


class QueueConfig(BaseModel):
    """Storage target and hydration window size for one queue."""

    model_config = ConfigDict(frozen=True, strict=True, extra="forbid")

    target: str = Field(
        description='SQLite database path; "" selects an in-memory database',
    )
    batch_size: int = Field(
        default=DEFAULT_BATCH_SIZE,
        ge=1,
        description="Maximum number of jobs hydrated into memory at once",
    )

    @classmethod
    def build(cls, target: str | None, batch_size: int | None = None) -> "QueueConfig":
        """Validate constructor arguments, raising ConfigurationError."""
        if target is None:
            raise ConfigurationError("No target parameter provided")
        if batch_size is None:
            batch_size = DEFAULT_BATCH_SIZE
        try:
            return cls(target=target, batch_size=batch_size)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid queue configuration: {exc}") from exc

    @classmethod
    def from_env(cls) -> "QueueConfig":
        """Read the configuration from PERSISTQ_* environment variables."""
        raw_batch = os.environ.get(ENV_BATCH_SIZE)
        batch_size: int | None = None
        if raw_batch is not None:
            try:
                batch_size = int(raw_batch)
            except ValueError as exc:
                raise ConfigurationError(
                    f"{ENV_BATCH_SIZE} must be an integer, got {raw_batch!r}"
                ) from exc
        return cls.build(os.environ.get(ENV_TARGET), batch_size)
