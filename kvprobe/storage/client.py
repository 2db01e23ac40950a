"""Store client layer: protocols plus a binary-safe ``redis-py`` adapter.

``QueryMode.DEFAULT_ON_ABSENT`` cannot tell a missing key from one holding
``b""``; it is kept so the probe can show that pitfall.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

import redis

from kvprobe.exceptions import ScriptRejectedError, StoreCommandError, StoreUnavailableError

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from kvprobe.config import ProbeSettings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# TTL reply sentinels (Redis >= 2.8)
# ---------------------------------------------------------------------------

NO_EXPIRY: int = -1    # key exists, no TTL set
NO_SUCH_KEY: int = -2  # key does not exist

# ---------------------------------------------------------------------------
# Query modes and per-position results
# ---------------------------------------------------------------------------


class QueryMode(Enum):
    """How batched retrieval reports keys that do not exist."""

    DEFAULT_ON_ABSENT = "default"    # b"" in place of a missing value
    OPTIONAL_ON_ABSENT = "optional"  # Present(value) | Absent()


@dataclass(slots=True, frozen=True)
class Present:
    """The key existed; ``value`` is its stored bytes (possibly empty)."""

    value: bytes


@dataclass(slots=True, frozen=True)
class Absent:
    """The key did not exist."""


Lookup = Present | Absent


def to_lookup(raw: bytes | None) -> Lookup:
    """Tag a raw reply element as :class:`Present` or :class:`Absent`."""
    return Absent() if raw is None else Present(raw)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class StoreBatchProto(Protocol):
    """Commands queued client-side and sent in a single round trip.

    Each command is evaluated by the store independently; the batch as a
    whole is not atomic.
    """

    def get(self, key: bytes) -> None:
        ...

    def set_if_not_exists(self, key: bytes, value: bytes) -> None:
        ...

    def expire(self, key: bytes, seconds: int) -> None:
        ...

    def ttl(self, key: bytes) -> None:
        ...

    def run_atomic_script(self, source: str, keys: Sequence[bytes], args: Sequence[Any]) -> None:
        ...

    def execute(self) -> list[Any]:
        """Send all queued commands; return one reply per command, in order."""
        ...


class StoreClientProto(Protocol):
    """Store operations the scenario engine needs."""

    def ping(self) -> bool:
        """Return ``True`` if the connection is alive."""
        ...

    def get(self, key: bytes) -> bytes | None:
        """Return the value at *key*, or ``None`` if absent."""
        ...

    def set(self, key: bytes, value: bytes) -> None:
        """Unconditionally set *key* to *value* (clears any TTL)."""
        ...

    def set_if_not_exists(self, key: bytes, value: bytes) -> bool:
        """Set *key* only if it has no value; return whether it was written."""
        ...

    def batched_get(self, keys: Sequence[bytes], mode: QueryMode) -> list[bytes] | list[Lookup]:
        """Fetch *keys* in one command; results follow query order."""
        ...

    def expire(self, key: bytes, seconds: int) -> bool:
        """Set a TTL on *key*; return ``False`` if the key does not exist."""
        ...

    def ttl(self, key: bytes) -> int:
        """Remaining TTL in seconds, :data:`NO_EXPIRY` or :data:`NO_SUCH_KEY`."""
        ...

    def run_atomic_script(self, source: str, keys: Sequence[bytes], args: Sequence[Any]) -> Any:
        """Execute *source* server-side with *keys* and *args*."""
        ...

    def batch(self) -> StoreBatchProto:
        """Open an empty pipeline bound to this connection."""
        ...

    def flush_all(self) -> None:
        """Delete every key in every database."""
        ...


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def _translate_errors(url: str, command: str) -> Iterator[None]:
    """Map ``redis-py`` exceptions onto the probe's setup errors."""
    try:
        yield
    except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as exc:
        raise StoreUnavailableError(url, str(exc)) from exc
    except redis.exceptions.ResponseError as exc:
        raise StoreCommandError(command, str(exc)) from exc
    except redis.exceptions.RedisError as exc:
        raise StoreUnavailableError(url, f"{type(exc).__name__}: {exc}") from exc


# ---------------------------------------------------------------------------
# RedisBatch
# ---------------------------------------------------------------------------


@dataclass
class RedisBatch:
    """Non-transactional ``redis-py`` pipeline.

    Attributes:
        store:    Owning store; used to resolve script digests.
        pipeline: Underlying pipeline opened with ``transaction=False``.
    """

    store: RedisStore
    pipeline: Any

    def get(self, key: bytes) -> None:
        self.pipeline.get(key)

    def set_if_not_exists(self, key: bytes, value: bytes) -> None:
        self.pipeline.setnx(key, value)

    def expire(self, key: bytes, seconds: int) -> None:
        self.pipeline.expire(key, seconds)

    def ttl(self, key: bytes) -> None:
        self.pipeline.ttl(key)

    def run_atomic_script(self, source: str, keys: Sequence[bytes], args: Sequence[Any]) -> None:
        # Load eagerly so a rejected body surfaces before anything is sent.
        sha = self.store.load_script(source)
        self.pipeline.evalsha(sha, len(keys), *keys, *args)

    def execute(self) -> list[Any]:
        with _translate_errors(self.store.url, "pipeline"):
            return self.pipeline.execute()


# ---------------------------------------------------------------------------
# RedisStore
# ---------------------------------------------------------------------------


@dataclass
class RedisStore:
    """:class:`StoreClientProto` backed by a single ``redis.Redis`` connection.

    Attributes:
        client: Underlying ``redis.Redis`` (``decode_responses=False``).
        url:    Connection URL, used in error messages.
    """

    client: Any
    url: str = "redis://localhost:6379/0"

    _scripts: dict[str, str] = field(default_factory=dict, init=False, repr=False)

    @classmethod
    def connect(cls, settings: ProbeSettings) -> RedisStore:
        """Open a connection to ``settings.url`` and verify it with PING.

        Raises:
            StoreUnavailableError: If the store does not answer.
        """
        url = settings.url
        client = redis.Redis.from_url(
            url,
            decode_responses=False,
            socket_timeout=settings.socket_timeout,
        )
        store = cls(client=client, url=url)
        store.ping()
        logger.info("Connected to %s", url)
        return store

    def ping(self) -> bool:
        with _translate_errors(self.url, "PING"):
            return bool(self.client.ping())

    def get(self, key: bytes) -> bytes | None:
        with _translate_errors(self.url, "GET"):
            return self.client.get(key)

    def set(self, key: bytes, value: bytes) -> None:
        with _translate_errors(self.url, "SET"):
            self.client.set(key, value)

    def set_if_not_exists(self, key: bytes, value: bytes) -> bool:
        with _translate_errors(self.url, "SETNX"):
            return bool(self.client.setnx(key, value))

    def batched_get(self, keys: Sequence[bytes], mode: QueryMode) -> list[bytes] | list[Lookup]:
        with _translate_errors(self.url, "MGET"):
            raw = self.client.mget(list(keys))
        if mode is QueryMode.OPTIONAL_ON_ABSENT:
            return [to_lookup(v) for v in raw]
        return [b"" if v is None else v for v in raw]

    def expire(self, key: bytes, seconds: int) -> bool:
        with _translate_errors(self.url, "EXPIRE"):
            return bool(self.client.expire(key, seconds))

    def ttl(self, key: bytes) -> int:
        with _translate_errors(self.url, "TTL"):
            return int(self.client.ttl(key))

    def load_script(self, source: str) -> str:
        """Load *source* into the store's script cache; return its SHA1.

        Digests are cached per connection.  FLUSHALL leaves the server's
        script cache intact, so a digest stays valid for the whole run.

        Raises:
            ScriptRejectedError: If the store refuses the body (e.g. syntax error).
        """
        sha = self._scripts.get(source)
        if sha is not None:
            return sha
        try:
            sha = self.client.script_load(source)
        except redis.exceptions.ResponseError as exc:
            raise ScriptRejectedError(str(exc)) from exc
        except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as exc:
            raise StoreUnavailableError(self.url, str(exc)) from exc
        except redis.exceptions.RedisError as exc:
            raise StoreUnavailableError(self.url, f"{type(exc).__name__}: {exc}") from exc
        logger.debug("Loaded script %s", sha)
        self._scripts[source] = sha
        return sha

    def run_atomic_script(self, source: str, keys: Sequence[bytes], args: Sequence[Any]) -> Any:
        sha = self.load_script(source)
        with _translate_errors(self.url, "EVALSHA"):
            return self.client.evalsha(sha, len(keys), *keys, *args)

    def batch(self) -> RedisBatch:
        return RedisBatch(store=self, pipeline=self.client.pipeline(transaction=False))

    def flush_all(self) -> None:
        with _translate_errors(self.url, "FLUSHALL"):
            self.client.flushall()

    def close(self) -> None:
        """Release the underlying connection pool."""
        self.client.close()
