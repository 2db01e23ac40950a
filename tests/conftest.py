"""Shared test fixtures for kvprobe."""

from __future__ import annotations

import os
import random
from collections.abc import Callable, Sequence
from typing import Any

import pytest

from kvprobe.config import ProbeSettings
from kvprobe.exceptions import ScriptRejectedError
from kvprobe.storage import NO_EXPIRY, NO_SUCH_KEY, QueryMode, to_lookup
from kvprobe.ttl import SET_TTL_LUA

ScriptFn = Callable[["FakeStore", Sequence[bytes], Sequence[Any]], Any]


def _set_ttl_if_empty(store: FakeStore, keys: Sequence[bytes], args: Sequence[Any]) -> None:
    key = keys[0]
    if store.data.get(key) == b"":
        store.expire(key, int(args[0]))


class FakeBatch:
    """Queues calls against a :class:`FakeStore`; replays them on execute."""

    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self._ops: list[Callable[[], Any]] = []

    def get(self, key: bytes) -> None:
        self._ops.append(lambda: self.store.get(key))

    def set_if_not_exists(self, key: bytes, value: bytes) -> None:
        self._ops.append(lambda: self.store.set_if_not_exists(key, value))

    def expire(self, key: bytes, seconds: int) -> None:
        self._ops.append(lambda: self.store.expire(key, seconds))

    def ttl(self, key: bytes) -> None:
        self._ops.append(lambda: self.store.ttl(key))

    def run_atomic_script(self, source: str, keys: Sequence[bytes], args: Sequence[Any]) -> None:
        self.store.script(source)
        self._ops.append(lambda: self.store.run_atomic_script(source, keys, args))

    def execute(self) -> list[Any]:
        ops, self._ops = self._ops, []
        self.store.round_trips += 1
        return [op() for op in ops]


class FakeStore:
    """In-memory store honouring the documented Redis semantics.

    TTLs do not decay: ``ttl`` reports exactly the seconds last set.
    """

    def __init__(self, scripts: dict[str, ScriptFn] | None = None) -> None:
        self.data: dict[bytes, bytes] = {}
        self.expiry: dict[bytes, int] = {}
        self.scripts: dict[str, ScriptFn] = (
            {SET_TTL_LUA: _set_ttl_if_empty} if scripts is None else scripts
        )
        self.flushes = 0
        self.round_trips = 0

    def script(self, source: str) -> ScriptFn:
        try:
            return self.scripts[source]
        except KeyError:
            raise ScriptRejectedError("ERR Error compiling script") from None

    def ping(self) -> bool:
        return True

    def get(self, key: bytes) -> bytes | None:
        return self.data.get(key)

    def set(self, key: bytes, value: bytes) -> None:
        self.data[key] = value
        self.expiry.pop(key, None)

    def set_if_not_exists(self, key: bytes, value: bytes) -> bool:
        if key in self.data:
            return False
        self.data[key] = value
        return True

    def batched_get(self, keys: Sequence[bytes], mode: QueryMode) -> list[Any]:
        raw = [self.data.get(k) for k in keys]
        if mode is QueryMode.OPTIONAL_ON_ABSENT:
            return [to_lookup(v) for v in raw]
        return [b"" if v is None else v for v in raw]

    def expire(self, key: bytes, seconds: int) -> bool:
        if key not in self.data:
            return False
        self.expiry[key] = seconds
        return True

    def ttl(self, key: bytes) -> int:
        if key not in self.data:
            return NO_SUCH_KEY
        return self.expiry.get(key, NO_EXPIRY)

    def run_atomic_script(self, source: str, keys: Sequence[bytes], args: Sequence[Any]) -> Any:
        return self.script(source)(self, keys, args)

    def batch(self) -> FakeBatch:
        return FakeBatch(self)

    def flush_all(self) -> None:
        self.data.clear()
        self.expiry.clear()
        self.flushes += 1


@pytest.fixture(autouse=True)
def clean_probe_env(monkeypatch):
    """Keep developer KVPROBE_* variables out of the tests."""
    for name in list(os.environ):
        if name.startswith("KVPROBE_"):
            monkeypatch.delenv(name)


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def small_settings() -> ProbeSettings:
    """Smallest scales the settings validators accept, few shuffles."""
    return ProbeSettings(
        port=6379,
        shuffle_iterations=5,
        dense_keys=1_000,
        mixed_existing_keys=50,
        mixed_absent_keys=50,
        ttl_scale_keys=100,
    )


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)
