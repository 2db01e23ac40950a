"""Probe exception hierarchy.

Two failure classes abort a run:

* ``SetupError`` and its subclasses: the harness could not establish the
  conditions for a scenario (bad port, unreachable store, rejected script).
* ``ContractViolation``: the store answered, but the answer diverged from
  the documented command contract.

Both are fatal.  The CLI maps them to different exit codes so that a broken
setup is never reported as a store defect.
"""

from __future__ import annotations

from typing import Any


class ProbeError(Exception):
    """Base exception for all harness-side failures."""

    __slots__ = ()


class SetupError(ProbeError):
    """Raised when the run cannot proceed for infrastructure reasons."""

    __slots__ = ()


class InvalidPortError(SetupError):
    """Raised when the store port is missing or cannot be parsed."""

    __slots__ = ("raw",)

    def __init__(self, raw: str | None) -> None:
        if raw is None:
            super().__init__("No store port given")
        else:
            super().__init__(f"Invalid store port {raw!r}: expected an integer in 1..65535")
        self.raw = raw


class StoreUnavailableError(SetupError):
    """Raised when the store cannot be reached."""

    __slots__ = ("url",)

    def __init__(self, url: str, detail: str) -> None:
        super().__init__(f"Store at {url} is unreachable: {detail}")
        self.url = url


class ScriptRejectedError(SetupError):
    """Raised when the store refuses to load a server-side script."""

    __slots__ = ("detail",)

    def __init__(self, detail: str) -> None:
        super().__init__(f"Store rejected script body: {detail}")
        self.detail = detail


class StoreCommandError(SetupError):
    """Raised when the store replies to a command with an error reply."""

    __slots__ = ("command",)

    def __init__(self, command: str, detail: str) -> None:
        super().__init__(f"{command} failed: {detail}")
        self.command = command


class DegenerateShuffleError(SetupError):
    """Raised when a shuffle left a batch in the same order.

    Querying an unchanged order would prove nothing about ordering, so the
    scenario must not silently pass.
    """

    __slots__ = ("fingerprint",)

    def __init__(self, fingerprint: str) -> None:
        super().__init__(f"Shuffle did not change batch order (fingerprint {fingerprint[:16]})")
        self.fingerprint = fingerprint


class InvalidKeyError(ProbeError, ValueError):
    """Raised when a key is unusable, e.g. zero bytes long."""

    __slots__ = ()


class ContractViolation(AssertionError):
    """Raised when the store's observable behaviour breaks its contract.

    Attributes:
        context:  What was being checked.
        expected: The value the documented contract requires.
        actual:   The value the store produced.
    """

    def __init__(self, context: str, expected: Any, actual: Any) -> None:
        super().__init__(f"{context}: expected {expected!r}, got {actual!r}")
        self.context = context
        self.expected = expected
        self.actual = actual
