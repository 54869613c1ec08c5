"""A single circuit breaker driven by sliding-window metrics."""

from __future__ import annotations

import threading
from typing import Optional, Union

from .breaker_metrics import Window
from .breaker_options import Options, State
from .breaker_sharded import ShardedWindow
from .trip import TripFunc

MetricWindow = Union[Window, ShardedWindow]


class Breaker:
    """A circuit breaker moving between Closed, Open and HalfOpen.

    Closed lets every call through and trips to Open when the trip function
    says so after an error. Open rejects calls until the cooling timeout has
    passed, then turns HalfOpen. HalfOpen lets one probe through per detect
    timeout; enough consecutive successes close it, any error opens it.
    """

    def __init__(self, options: Optional[Options] = None) -> None:
        opts = (options or Options()).with_defaults()
        window: MetricWindow
        if opts.enable_shard_p:
            window = ShardedWindow(opts.bucket_time, opts.bucket_nums)
        else:
            window = Window(opts.bucket_time, opts.bucket_nums)
        self._options = opts
        self._metricer = window
        self._now = opts.now
        self._lock = threading.Lock()
        self._state = State.CLOSED
        self._open_time = 0.0
        self._last_retry_time = 0.0
        self._half_open_success = 0

    def _notify(self, old: State, new: State) -> None:
        handler = self._options.breaker_state_change_handler
        if handler is not None:
            threading.Thread(
                target=handler, args=(old, new, self._metricer), daemon=True
            ).start()

    def succeed(self) -> None:
        """Record a success."""
        with self._lock:
            if self._state == State.HALF_OPEN:
                self._half_open_success += 1
                if self._half_open_success >= self._options.half_open_successes:
                    self._notify(State.HALF_OPEN, State.CLOSED)
                    self._metricer.reset()
                    self._state = State.CLOSED
            elif self._state == State.CLOSED:
                self._metricer.succeed()

    def _error(self, is_timeout: bool, trip: Optional[TripFunc]) -> None:
        if is_timeout:
            self._metricer.timeout()
        else:
            self._metricer.fail()

        with self._lock:
            if self._state == State.HALF_OPEN:
                self._notify(State.HALF_OPEN, State.OPEN)
                self._open_time = self._now()
                self._state = State.OPEN
            elif self._state == State.CLOSED and trip is not None and trip(self._metricer):
                self._notify(State.CLOSED, State.OPEN)
                self._open_time = self._now()
                self._state = State.OPEN

    def fail(self) -> None:
        """Record a failure, judged by the configured trip function."""
        self._error(False, self._options.should_trip)

    def fail_with_trip(self, trip: Optional[TripFunc]) -> None:
        """Record a failure, judged by ``trip``."""
        self._error(False, trip)

    def timeout(self) -> None:
        """Record a timeout, judged by the configured trip function."""
        self._error(True, self._options.should_trip)

    def timeout_with_trip(self, trip: Optional[TripFunc]) -> None:
        """Record a timeout, judged by ``trip``."""
        self._error(True, trip)

    def is_allowed(self) -> bool:
        """Tell whether a call may go through now."""
        with self._lock:
            if self._state == State.OPEN:
                now = self._now()
                if self._open_time + self._options.cooling_timeout > now:
                    return False
                self._notify(State.OPEN, State.HALF_OPEN)
                self._state = State.HALF_OPEN
                self._half_open_success = 0
                self._last_retry_time = now
                return True
            if self._state == State.HALF_OPEN:
                now = self._now()
                if self._last_retry_time + self._options.detect_timeout > now:
                    return False
                self._last_retry_time = now
                return True
            return True

    def state(self) -> State:
        """Return the current state."""
        return self._state

    def metricer(self) -> MetricWindow:
        """Return the metrics this breaker records into."""
        return self._metricer

    def reset(self) -> None:
        """Clear the metrics and close the breaker."""
        with self._lock:
            self._metricer.reset()
            self._state = State.CLOSED