"""Conditional expiry: set a TTL on a key only if its value is empty.

Two encodings of the rule are exposed and deliberately kept apart:

``TTLStrategy.SCRIPT``
    :data:`SET_TTL_LUA` runs server-side as one atomic step.  The TTL is set
    only when the key exists and holds ``b""``.

``TTLStrategy.BATCH``
    SETNX followed unconditionally by EXPIRE, sent as one pipeline.  The two
    commands are evaluated independently, so when SETNX is rejected because
    the key already holds a non-empty value the EXPIRE still runs.  This is
    the weaker guarantee of the two, and :func:`expected_ttl_applied` models
    it as such.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from kvprobe.exceptions import InvalidKeyError

if TYPE_CHECKING:
    from kvprobe.storage import StoreBatchProto, StoreClientProto

logger = logging.getLogger(__name__)

SET_TTL_LUA = """
if redis.call("EXISTS", KEYS[1]) == 1 then
  local payload = redis.call("GET", KEYS[1])
  if payload == "" then
    redis.call("EXPIRE", KEYS[1], ARGV[1])
  end
end
"""


class TTLStrategy(Enum):
    """How the conditional expiry is executed."""

    SCRIPT = "script"  # atomic, server-side
    BATCH = "batch"    # pipelined SETNX + EXPIRE, not atomic


def _check_key(key: bytes) -> None:
    if not key:
        raise InvalidKeyError("conditional TTL needs a non-empty key")


def expected_ttl_applied(strategy: TTLStrategy, existing: bytes | None, value: bytes) -> bool:
    """Whether a TTL must be present after a conditional-TTL round trip.

    Args:
        strategy: Execution form used.
        existing: Value held before SETNX, ``None`` if the key was absent.
        value:    Value offered to SETNX.
    """
    if strategy is TTLStrategy.BATCH:
        # After SETNX the key exists either way and EXPIRE runs unconditionally.
        return True
    after = value if existing is None else existing
    return after == b""


def expire_if_empty(store: StoreClientProto, key: bytes, seconds: int) -> Any:
    """Run :data:`SET_TTL_LUA` once for *key*.

    Raises:
        InvalidKeyError: If *key* is empty.
        ScriptRejectedError: If the store refuses the script body.
    """
    _check_key(key)
    return store.run_atomic_script(SET_TTL_LUA, [key], [seconds])


def queue_conditional_ttl(
    batch: StoreBatchProto,
    strategy: TTLStrategy,
    key: bytes,
    value: bytes,
    seconds: int,
) -> None:
    """Queue SETNX *key* *value* followed by the *strategy*'s expiry step."""
    _check_key(key)
    batch.set_if_not_exists(key, value)
    if strategy is TTLStrategy.SCRIPT:
        batch.run_atomic_script(SET_TTL_LUA, [key], [seconds])
    else:
        batch.expire(key, seconds)


def apply_conditional_ttl(
    store: StoreClientProto,
    strategy: TTLStrategy,
    key: bytes,
    value: bytes,
    seconds: int,
) -> list[Any]:
    """SETNX + conditional expiry for a single key in one round trip.

    Returns the raw per-command replies.
    """
    batch = store.batch()
    queue_conditional_ttl(batch, strategy, key, value, seconds)
    replies = batch.execute()
    logger.debug("Conditional TTL (%s) replies: %r", strategy.value, replies)
    return replies
