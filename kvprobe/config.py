"""Environment-driven probe settings."""

from __future__ import annotations

import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Below this size a run of 100 shuffles has a non-negligible chance of
# repeating an order.
MIN_ORDERING_BATCH = 1_000

LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"})


class ProbeSettings(BaseSettings):
    """Connection target and scenario scales.

    Every field can be overridden with a ``KVPROBE_``-prefixed environment
    variable (e.g. ``KVPROBE_DENSE_KEYS=2000``).  The port given on the
    command line wins over ``KVPROBE_PORT``.
    """

    host: str = "localhost"
    port: int | None = None
    db: int = 0
    socket_timeout: float = 10.0

    shuffle_iterations: int = 100
    dense_keys: int = 10_000
    mixed_existing_keys: int = 5_000
    mixed_absent_keys: int = 5_000
    ttl_scale_keys: int = 10_000

    script_ttl_seconds: int = 5
    batch_ttl_seconds: int = 20

    log_level: str = "WARNING"

    model_config = {"env_prefix": "KVPROBE_", "env_file": ".env", "extra": "ignore"}

    @field_validator("dense_keys")
    @classmethod
    def _dense_batch_large_enough(cls, v: int) -> int:
        if v < MIN_ORDERING_BATCH:
            raise ValueError(f"dense_keys must be >= {MIN_ORDERING_BATCH}, got {v}")
        return v

    @field_validator("mixed_existing_keys", "mixed_absent_keys", "ttl_scale_keys")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"key count must be positive, got {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"unknown log level {v!r}")
        return level

    @field_validator("port")
    @classmethod
    def _port_in_range(cls, v: int | None) -> int | None:
        if v is not None and not 0 < v < 65_536:
            raise ValueError(f"port out of range: {v}")
        return v

    @property
    def url(self) -> str:
        """Redis URL for the configured target."""
        return f"redis://{self.host}:{self.port}/{self.db}"
