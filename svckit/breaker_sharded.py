"""Sliding-window metrics whose success counts are spread over shards."""

from __future__ import annotations

import threading
import time
from typing import Optional

from .breaker_counter import ShardedCounter
from .breaker_metrics import (
    DEFAULT_BUCKET_NUMS,
    DEFAULT_BUCKET_TIME,
    MIN_BUCKET_NUMS,
    Metricer,
)


class _ShardedBucket:
    __slots__ = ("failure", "success", "timeout")

    def __init__(self, shards: Optional[int]) -> None:
        self.failure = 0
        self.success = ShardedCounter(shards)
        self.timeout = 0

    def reset(self) -> None:
        self.failure = 0
        self.success.zero()
        self.timeout = 0


class ShardedWindow(Metricer):
    """A ring of buckets like ``Window``, with successes counted per shard.

    Successes are the hot path, so they go to sharded counters; failures
    and timeouts are plain integers updated under the window's lock.
    """

    def __init__(
        self,
        bucket_time: float = DEFAULT_BUCKET_TIME,
        bucket_nums: int = DEFAULT_BUCKET_NUMS,
        shards: Optional[int] = None,
    ) -> None:
        if bucket_nums < MIN_BUCKET_NUMS:
            raise ValueError(f"bucket_nums can't be less than {MIN_BUCKET_NUMS}")
        self._lock = threading.Lock()
        self.bucket_time = bucket_time
        self.bucket_nums = bucket_nums
        self._buckets = [_ShardedBucket(shards) for _ in range(bucket_nums)]
        self._oldest = 0
        self._latest = 0
        self._in_window = 1
        self._all_success = ShardedCounter(shards)
        self._all_failure = 0
        self._all_timeout = 0
        self._err_start = 0
        self._conse_err = 0
        self.reset()

    def _record_error(self) -> None:
        self._conse_err += 1
        if self._err_start == 0:
            self._err_start = time.time_ns()

    def succeed(self) -> None:
        """Record a success."""
        with self._lock:
            bucket = self._buckets[self._latest]
            self._err_start = 0
            self._conse_err = 0
            self._all_success.add(1)
            bucket.success.add(1)

    def fail(self) -> None:
        """Record a failure."""
        with self._lock:
            self._record_error()
            self._all_failure += 1
            self._buckets[self._latest].failure += 1

    def timeout(self) -> None:
        """Record a timeout."""
        with self._lock:
            self._record_error()
            self._all_timeout += 1
            self._buckets[self._latest].timeout += 1

    def counts(self) -> tuple[int, int, int]:
        return self._all_success.get(), self._all_failure, self._all_timeout

    def successes(self) -> int:
        return self._all_success.get()

    def failures(self) -> int:
        return self._all_failure

    def timeouts(self) -> int:
        return self._all_timeout

    def conse_errors(self) -> int:
        return self._conse_err

    def conse_time(self) -> float:
        return (time.time_ns() - self._err_start) / 1e9

    def error_rate(self) -> float:
        successes, failures, timeouts = self.counts()
        total = successes + failures + timeouts
        if total == 0:
            return 0.0
        return (failures + timeouts) / total

    def samples(self) -> int:
        return sum(self.counts())

    def reset(self) -> None:
        """Clear all counts and start again from the first bucket."""
        with self._lock:
            self._oldest = 0
            self._latest = 0
            self._in_window = 1
            self._conse_err = 0
            self._all_success.zero()
            self._all_failure = 0
            self._all_timeout = 0
            self._buckets[self._latest].reset()

    def tick(self) -> None:
        """Move to the next bucket, discarding the oldest one once the ring is full."""
        with self._lock:
            # Must come first: the latest bucket may be about to overwrite the oldest.
            if self._in_window == self.bucket_nums:
                old = self._buckets[self._oldest]
                self._all_success.add(-old.success.get())
                self._all_failure -= old.failure
                self._all_timeout -= old.timeout
                self._oldest = (self._oldest + 1) % self.bucket_nums
            else:
                self._in_window += 1
            self._latest = (self._latest + 1) % self.bucket_nums
            self._buckets[self._latest].reset()