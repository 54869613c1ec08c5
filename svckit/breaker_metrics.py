"""Sliding-window metrics of successes, failures and timeouts."""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

# Each bucket covers this many seconds.
DEFAULT_BUCKET_TIME = 0.1
# Number of buckets; the window spans DEFAULT_BUCKET_TIME * DEFAULT_BUCKET_NUMS.
DEFAULT_BUCKET_NUMS = 100
MIN_BUCKET_NUMS = 100


class Metricer(ABC):
    """Read access to counts of successes, failures and timeouts."""

    @abstractmethod
    def failures(self) -> int:
        """Number of failures in the window."""

    @abstractmethod
    def successes(self) -> int:
        """Number of successes in the window."""

    @abstractmethod
    def timeouts(self) -> int:
        """Number of timeouts in the window."""

    @abstractmethod
    def conse_errors(self) -> int:
        """Number of errors since the last success."""

    @abstractmethod
    def conse_time(self) -> float:
        """Seconds since the first of the current run of errors."""

    @abstractmethod
    def error_rate(self) -> float:
        """(timeouts + failures) / (timeouts + failures + successes)."""

    @abstractmethod
    def samples(self) -> int:
        """timeouts + failures + successes."""

    @abstractmethod
    def counts(self) -> tuple[int, int, int]:
        """Return (successes, failures, timeouts)."""


@dataclass
class _Bucket:
    failure: int = 0
    success: int = 0
    timeout: int = 0

    def reset(self) -> None:
        self.failure = 0
        self.success = 0
        self.timeout = 0


class Window(Metricer):
    """A ring of buckets; ``tick`` advances it and drops the oldest bucket."""

    def __init__(
        self,
        bucket_time: float = DEFAULT_BUCKET_TIME,
        bucket_nums: int = DEFAULT_BUCKET_NUMS,
    ) -> None:
        if bucket_nums < MIN_BUCKET_NUMS:
            raise ValueError(f"bucket_nums can't be less than {MIN_BUCKET_NUMS}")
        self._lock = threading.Lock()
        self.bucket_time = bucket_time
        self.bucket_nums = bucket_nums
        self._buckets = [_Bucket() for _ in range(bucket_nums)]
        self._oldest = 0
        self._latest = 0
        self._in_window = 1
        self._all_success = 0
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
            self._err_start = 0
            self._conse_err = 0
            self._all_success += 1
            self._buckets[self._latest].success += 1

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
        with self._lock:
            return self._all_success, self._all_failure, self._all_timeout

    def successes(self) -> int:
        return self._all_success

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
            self._all_success = 0
            self._all_failure = 0
            self._all_timeout = 0
            self._buckets[self._latest].reset()

    def tick(self) -> None:
        """Move to the next bucket, discarding the oldest one once the ring is full."""
        with self._lock:
            # Must come first: the latest bucket may be about to overwrite the oldest.
            if self._in_window == self.bucket_nums:
                old = self._buckets[self._oldest]
                self._all_success -= old.success
                self._all_failure -= old.failure
                self._all_timeout -= old.timeout
                self._oldest = (self._oldest + 1) % self.bucket_nums
            else:
                self._in_window += 1
            self._latest = (self._latest + 1) % self.bucket_nums
            self._buckets[self._latest].reset()