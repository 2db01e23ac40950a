"""Key batches and the order fingerprint used to verify shuffles.

A :class:`KeyBatch` is a duplicate-free, ordered list of :class:`TaggedKey`.
Its content never changes after construction; only the order does, through
:meth:`KeyBatch.shuffle`, which refuses to return until the order
:func:`fingerprint` has actually changed.
"""

from __future__ import annotations

import hashlib
import logging
import random
import uuid
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum

from kvprobe.exceptions import DegenerateShuffleError

logger = logging.getLogger(__name__)


class Membership(Enum):
    """Whether a key is written to the store before it is queried."""

    EXISTS = "exists"
    ABSENT = "absent"


@dataclass(slots=True, frozen=True)
class TaggedKey:
    """Key bytes plus the membership class fixed at generation time."""

    key: bytes
    membership: Membership

    @property
    def exists(self) -> bool:
        return self.membership is Membership.EXISTS


def new_key() -> bytes:
    """Return 16 random bytes (a UUID4) for use as a globally-unique key."""
    return uuid.uuid4().bytes


def fingerprint(keys: Iterable[TaggedKey]) -> str:
    """Order-sensitive digest of a tagged key sequence.

    Every element is framed as membership tag, 4-byte length, key bytes, so
    no two different sequences share an encoding.  The result is only
    compared within one process and is not meant to be persisted.
    """
    h = hashlib.blake2b(digest_size=32)
    for tk in keys:
        h.update(b"E" if tk.exists else b"A")
        h.update(len(tk.key).to_bytes(4, "big"))
        h.update(tk.key)
    return h.hexdigest()


class KeyBatch:
    """Ordered, duplicate-free collection of tagged keys.

    Raises:
        ValueError: If two entries share the same key bytes.
    """

    __slots__ = ("_keys", "_fingerprint")

    def __init__(self, keys: Iterable[TaggedKey]) -> None:
        self._keys = list(keys)
        if len({tk.key for tk in self._keys}) != len(self._keys):
            raise ValueError("KeyBatch contains duplicate keys")
        self._fingerprint = fingerprint(self._keys)

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self) -> Iterator[TaggedKey]:
        return iter(self._keys)

    def __getitem__(self, index: int) -> TaggedKey:
        return self._keys[index]

    @property
    def fingerprint(self) -> str:
        """Fingerprint of the current order."""
        return self._fingerprint

    @property
    def keys(self) -> list[bytes]:
        """Key bytes in current order, ready to be sent as a query."""
        return [tk.key for tk in self._keys]

    def with_membership(self, membership: Membership) -> list[bytes]:
        """Key bytes of every entry in *membership*, in current order."""
        return [tk.key for tk in self._keys if tk.membership is membership]

    def shuffle(self, rng: random.Random) -> str:
        """Shuffle in place and return the new fingerprint.

        Raises:
            ValueError: If the batch has fewer than two keys.
            DegenerateShuffleError: If the order did not change.
        """
        if len(self._keys) < 2:
            raise ValueError(f"cannot verify a shuffle of {len(self._keys)} key(s)")
        previous = self._fingerprint
        rng.shuffle(self._keys)
        current = fingerprint(self._keys)
        if current == previous:
            raise DegenerateShuffleError(current)
        self._fingerprint = current
        return current


def generate_batch(existing_count: int, absent_count: int = 0) -> KeyBatch:
    """Build a batch of fresh UUID keys: *existing_count* tagged EXISTS first,
    then *absent_count* tagged ABSENT.

    Writing the EXISTS subset (conventionally with value == key) is the
    caller's job.
    """
    if existing_count < 0 or absent_count < 0:
        raise ValueError("key counts must be non-negative")
    tagged = [TaggedKey(new_key(), Membership.EXISTS) for _ in range(existing_count)]
    tagged.extend(TaggedKey(new_key(), Membership.ABSENT) for _ in range(absent_count))
    batch = KeyBatch(tagged)
    logger.debug("Generated batch: %d existing, %d absent", existing_count, absent_count)
    return batch
