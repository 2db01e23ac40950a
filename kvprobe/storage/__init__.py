"""Store access for the probe: protocols and the ``redis-py`` adapter."""
from __future__ import annotations

from kvprobe.storage.client import (
    NO_EXPIRY,
    NO_SUCH_KEY,
    Absent,
    Lookup,
    Present,
    QueryMode,
    RedisBatch,
    RedisStore,
    StoreBatchProto,
    StoreClientProto,
    to_lookup,
)

__all__ = [
    "NO_EXPIRY",
    "NO_SUCH_KEY",
    "Absent",
    "Lookup",
    "Present",
    "QueryMode",
    "RedisBatch",
    "RedisStore",
    "StoreBatchProto",
    "StoreClientProto",
    "to_lookup",
]
