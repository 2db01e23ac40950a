"""Scenario engine: the ordered sequence of store contract checks.

Each scenario arranges store state, issues commands and checks the replies.
The first failed check raises :class:`~kvprobe.exceptions.ContractViolation`
and the run stops there; the last header printed names the contract that
broke.  Scenarios run one after another on the single store handle passed
to :class:`ScenarioEngine`.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from kvprobe.config import ProbeSettings
from kvprobe.exceptions import ContractViolation
from kvprobe.keys import KeyBatch, Membership, generate_batch
from kvprobe.storage import NO_EXPIRY, Absent, Present, QueryMode
from kvprobe.ttl import (
    TTLStrategy,
    apply_conditional_ttl,
    expected_ttl_applied,
    expire_if_empty,
    queue_conditional_ttl,
)

if TYPE_CHECKING:
    from kvprobe.storage import StoreClientProto

logger = logging.getLogger(__name__)

K0 = b"\x00"
V1 = b"\x01"
V2 = b"\x02"
EMPTY = b""


@dataclass(slots=True, frozen=True)
class Scenario:
    """A named contract check.

    Attributes:
        title:        Header printed before the scenario runs.
        run:          Arrange, act and assert, raising on the first mismatch.
        notes:        Extra transcript lines printed under the header.
        flush_before: Start from an empty store (FLUSHALL first).
    """

    title: str
    run: Callable[[], None]
    notes: tuple[str, ...] = ()
    flush_before: bool = True


@dataclass(slots=True, frozen=True)
class ScenarioResult:
    title: str
    elapsed_ms: float


def expect_equal(actual: Any, expected: Any, context: str) -> None:
    """Raise :class:`ContractViolation` unless ``actual == expected``."""
    if actual != expected:
        raise ContractViolation(context, expected, actual)


class ScenarioEngine:
    """Runs every scenario in fixed order against one store.

    Args:
        store:    Store handle, owned by the engine for the run.
        settings: Scales and TTLs; defaults to :class:`ProbeSettings` from the
                  environment.
        rng:      Randomness source for shuffles (``SystemRandom`` if omitted).
        echo:     Sink for transcript lines.
    """

    def __init__(
        self,
        store: StoreClientProto,
        settings: ProbeSettings | None = None,
        *,
        rng: random.Random | None = None,
        echo: Callable[[str], None] = print,
    ) -> None:
        self.store = store
        self.settings = settings or ProbeSettings()
        self.rng = rng or random.SystemRandom()
        self.echo = echo

    # -- running ----------------------------------------------------------

    def measure(self, fn: Callable[[], None]) -> float:
        """Run *fn*, print and return its wall time in milliseconds."""
        start = time.perf_counter()
        fn()
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        self.echo(f"Took {elapsed_ms:.3f} ms")
        return elapsed_ms

    def clear(self) -> None:
        self.echo("===== Clear Redis =====")
        self.measure(self.store.flush_all)

    def run_scenario(self, scenario: Scenario) -> ScenarioResult:
        if scenario.flush_before:
            self.clear()
        self.echo(f"===== {scenario.title} =====")
        for note in scenario.notes:
            self.echo(note)
        elapsed_ms = self.measure(scenario.run)
        logger.info("Scenario %r passed in %.1f ms", scenario.title, elapsed_ms)
        return ScenarioResult(scenario.title, elapsed_ms)

    def run(self) -> list[ScenarioResult]:
        """Run all scenarios; the first failure propagates."""
        results = [self.run_scenario(s) for s in self.scenarios()]
        self.clear()
        return results

    def scenarios(self) -> list[Scenario]:
        s = self.settings
        iters = s.shuffle_iterations
        return [
            Scenario("A KEY AND A VALUE MAY BOTH BE BINARY", self.binary_safety),
            Scenario("SET STORES KEYS WITHOUT A VALUE", self.empty_value),
            Scenario(
                "MGET RETURNS VALUES IN THE ORDER THEY WERE QUERIED",
                self.mget_order_dense,
                notes=(f"{s.dense_keys} keys {iters} times",),
            ),
            Scenario(
                "MGET RETURNS VALUES IN THE ORDER THEY WERE QUERIED INCLUDING NONEXISTING "
                "KEYS (OPTIONAL RESULT PER KEY)",
                self.mget_order_optional,
                notes=(
                    f"{s.mixed_existing_keys} existing and {s.mixed_absent_keys} "
                    f"non existing keys {iters} times",
                ),
            ),
            Scenario(
                "MGET RETURNS VALUES IN THE ORDER THEY WERE QUERIED INCLUDING NONEXISTING "
                "KEYS (EMPTY VALUE WHERE A KEY DOES NOT EXIST)",
                self.mget_order_default,
                notes=(
                    "Not the correct way to query: https://redis.io/topics/protocol#array-reply",
                    "An existing key holding an empty value reads the same as a missing key.",
                    f"{s.mixed_existing_keys} existing and {s.mixed_absent_keys} "
                    f"non existing keys {iters} times",
                ),
            ),
            Scenario("SET DOES OVERWRITE A VALUE", self.set_overwrites),
            Scenario("SETNX DOES NOT OVERWRITE A VALUE", self.setnx_keeps_value),
            Scenario(
                "PIPELINE: SETNX THEN EXPIRE WILL SET A TTL ON AN EXISTING VALUE",
                self.batch_ttl_on_existing,
                notes=(f"No TTL is reported as {NO_EXPIRY}",),
            ),
            Scenario(
                "A LUA SCRIPT CAN CONDITIONALLY SET A TTL",
                self.script_ttl_both_branches,
                notes=("A Lua script is atomic: https://redis.io/commands/eval#atomicity-of-scripts",),
            ),
            Scenario(
                f"PIPELINE: SET TTL {s.ttl_scale_keys} TIMES WITH SETNX AND EXPIRE",
                self.batch_ttl_at_scale,
            ),
            Scenario(
                f"PIPELINE: SET TTL {s.ttl_scale_keys} TIMES WITH SETNX AND LUA "
                "(ON EMPTY VALUES, ADDS TTL)",
                self.script_ttl_at_scale_empty,
                notes=("Runs on top of the previous scenario's keys.",),
                flush_before=False,
            ),
            Scenario(
                f"PIPELINE: SET TTL {s.ttl_scale_keys} TIMES WITH SETNX AND LUA "
                "(ON NON EMPTY VALUES, DOES NOT ADD TTL)",
                self.script_ttl_at_scale_non_empty,
            ),
        ]

    # -- helpers ----------------------------------------------------------

    def _write_self_valued(self, batch: KeyBatch) -> None:
        for key in batch.with_membership(Membership.EXISTS):
            self.store.set(key, key)

    def _expect_value(self, key: bytes, expected: bytes | None) -> None:
        expect_equal(self.store.get(key), expected, f"GET {key!r}")

    def _expect_ttl(self, key: bytes, applied: bool, seconds: int) -> int:
        ttl = self.store.ttl(key)
        check_ttl(ttl, applied, seconds, f"TTL {key!r}")
        return ttl

    # -- scenarios --------------------------------------------------------

    def binary_safety(self) -> None:
        self.store.set(K0, V1)
        self._expect_value(K0, V1)

    def empty_value(self) -> None:
        self.store.set(b"key", EMPTY)
        self._expect_value(b"key", EMPTY)

    def mget_order_dense(self) -> None:
        batch = generate_batch(self.settings.dense_keys)
        self._write_self_valued(batch)
        for i in range(self.settings.shuffle_iterations):
            batch.shuffle(self.rng)
            query = batch.keys
            result = self.store.batched_get(query, QueryMode.DEFAULT_ON_ABSENT)
            expect_equal(len(result), len(query), f"MGET reply length (shuffle {i})")
            for pos, (key, value) in enumerate(zip(query, result)):
                expect_equal(value, key, f"MGET position {pos} (shuffle {i})")

    def mget_order_optional(self) -> None:
        batch = generate_batch(self.settings.mixed_existing_keys, self.settings.mixed_absent_keys)
        self._write_self_valued(batch)
        for i in range(self.settings.shuffle_iterations):
            batch.shuffle(self.rng)
            result = self.store.batched_get(batch.keys, QueryMode.OPTIONAL_ON_ABSENT)
            expect_equal(len(result), len(batch), f"MGET reply length (shuffle {i})")
            for pos, (tk, lookup) in enumerate(zip(batch, result)):
                expected = Present(tk.key) if tk.exists else Absent()
                expect_equal(lookup, expected, f"MGET position {pos} (shuffle {i})")

    def mget_order_default(self) -> None:
        batch = generate_batch(self.settings.mixed_existing_keys, self.settings.mixed_absent_keys)
        self._write_self_valued(batch)
        for i in range(self.settings.shuffle_iterations):
            batch.shuffle(self.rng)
            result = self.store.batched_get(batch.keys, QueryMode.DEFAULT_ON_ABSENT)
            expect_equal(len(result), len(batch), f"MGET reply length (shuffle {i})")
            for pos, (tk, value) in enumerate(zip(batch, result)):
                expected = tk.key if tk.exists else EMPTY
                expect_equal(value, expected, f"MGET position {pos} (shuffle {i})")

    def set_overwrites(self) -> None:
        self.store.set(K0, V1)
        self._expect_value(K0, V1)
        self.store.set(K0, V2)
        self._expect_value(K0, V2)

    def setnx_keeps_value(self) -> None:
        self.store.set(K0, V1)
        self._expect_value(K0, V1)
        self.store.set_if_not_exists(K0, V2)
        self._expect_value(K0, V1)

    def batch_ttl_on_existing(self) -> None:
        seconds = self.settings.batch_ttl_seconds
        self.store.set(K0, V1)
        self._expect_value(K0, V1)
        self._expect_ttl(K0, False, seconds)
        apply_conditional_ttl(self.store, TTLStrategy.BATCH, K0, V2, seconds)
        self._expect_value(K0, V1)
        self._expect_ttl(K0, expected_ttl_applied(TTLStrategy.BATCH, V1, V2), seconds)

    def script_ttl_both_branches(self) -> None:
        seconds = self.settings.script_ttl_seconds
        self.store.set(K0, V1)
        self._expect_value(K0, V1)
        self._expect_ttl(K0, False, seconds)
        expire_if_empty(self.store, K0, seconds)
        self._expect_ttl(K0, False, seconds)

        self.store.set(K0, EMPTY)
        expire_if_empty(self.store, K0, seconds)
        ttl = self._expect_ttl(K0, True, seconds)
        self._expect_value(K0, EMPTY)
        self.echo(f"The TTL set by Lua is {ttl}")

    def _conditional_ttl_at_scale(self, strategy: TTLStrategy, value: bytes, seconds: int) -> None:
        keys = generate_batch(self.settings.ttl_scale_keys).keys

        batch = self.store.batch()
        for k in keys:
            queue_conditional_ttl(batch, strategy, k, value, seconds)
        batch.execute()

        check = self.store.batch()
        for k in keys:
            check.get(k)
            check.ttl(k)
        replies = check.execute()
        expect_equal(len(replies), 2 * len(keys), "pipeline reply count")

        applied = expected_ttl_applied(strategy, None, value)
        for k, got, ttl in zip(keys, replies[::2], replies[1::2]):
            expect_equal(got, value, f"GET {k!r}")
            check_ttl(ttl, applied, seconds, f"TTL {k!r}")

    def batch_ttl_at_scale(self) -> None:
        self._conditional_ttl_at_scale(TTLStrategy.BATCH, EMPTY, self.settings.batch_ttl_seconds)

    def script_ttl_at_scale_empty(self) -> None:
        self._conditional_ttl_at_scale(TTLStrategy.SCRIPT, EMPTY, self.settings.batch_ttl_seconds)

    def script_ttl_at_scale_non_empty(self) -> None:
        self._conditional_ttl_at_scale(TTLStrategy.SCRIPT, V1, self.settings.batch_ttl_seconds)


def check_ttl(ttl: int, applied: bool, seconds: int, context: str) -> None:
    """Check a TTL reply against whether a TTL of *seconds* was applied."""
    if not applied:
        expect_equal(ttl, NO_EXPIRY, context)
    elif not 0 < ttl <= seconds:
        raise ContractViolation(context, f"0 < ttl <= {seconds}", ttl)
