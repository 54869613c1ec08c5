"""Thread-safe integer counters used by the circuit breaker metrics."""

from __future__ import annotations

import os
import threading
from typing import Optional


class AtomicCounter:
    """An integer counter guarded by a lock."""

    __slots__ = ("_lock", "_value")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0

    def add(self, amount: int) -> None:
        """Add ``amount``, which may be negative."""
        with self._lock:
            self._value += amount

    def get(self) -> int:
        """Return the current value."""
        return self._value

    def zero(self) -> None:
        """Set the value back to zero."""
        with self._lock:
            self._value = 0


class ShardedCounter:
    """A counter split into shards picked by the calling thread.

    Writers on different threads mostly touch different shards; reading
    sums the shards, which is not a consistent snapshot under concurrent
    writes.
    """

    __slots__ = ("_shards",)

    def __init__(self, shards: Optional[int] = None) -> None:
        count = shards if shards is not None else (os.cpu_count() or 1)
        if count < 1:
            raise ValueError("a sharded counter needs at least one shard")
        self._shards = tuple(AtomicCounter() for _ in range(count))

    def add(self, amount: int) -> None:
        """Add ``amount`` to the shard of the calling thread."""
        self._shards[threading.get_ident() % len(self._shards)].add(amount)

    def get(self) -> int:
        """Return the sum over all shards."""
        return sum(shard.get() for shard in self._shards)

    def zero(self) -> None:
        """Set every shard back to zero."""
        for shard in self._shards:
            shard.zero()