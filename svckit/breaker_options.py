"""Circuit breaker states and configuration."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

from .breaker_metrics import DEFAULT_BUCKET_NUMS, DEFAULT_BUCKET_TIME, Metricer
from .trip import TripFunc, TripFuncWithKey

# Seconds a breaker stays open before turning half-open.
DEFAULT_COOLING_TIMEOUT = 5.0
# Seconds between probes while half-open.
DEFAULT_DETECT_TIMEOUT = 0.2
# Consecutive half-open successes needed to close again.
DEFAULT_HALF_OPEN_SUCCESSES = 2


class State(enum.IntEnum):
    """Breaker state.

    Closed trips to Open on errors; Open turns HalfOpen after the cooling
    timeout; HalfOpen closes after enough consecutive successes and opens
    again on any error.
    """

    OPEN = 0
    HALF_OPEN = 1
    CLOSED = 2

    def __str__(self) -> str:
        return _STATE_NAMES[self]


_STATE_NAMES = {State.OPEN: "OPEN", State.HALF_OPEN: "HALFOPEN", State.CLOSED: "CLOSED"}

BreakerStateChangeHandler = Callable[[State, State, Metricer], None]
PanelStateChangeHandler = Callable[[str, State, State, Metricer], None]


@dataclass
class Options:
    """Breaker settings; zero or negative numbers mean "use the default"."""

    bucket_time: float = 0.0
    bucket_nums: int = 0
    cooling_timeout: float = 0.0
    detect_timeout: float = 0.0
    half_open_successes: int = 0
    should_trip: Optional[TripFunc] = None
    should_trip_with_key: Optional[TripFuncWithKey] = None
    breaker_state_change_handler: Optional[BreakerStateChangeHandler] = None
    enable_shard_p: bool = False
    now: Optional[Callable[[], float]] = None

    def with_defaults(self) -> "Options":
        """Return a copy with every unset setting filled in."""
        return replace(
            self,
            bucket_time=self.bucket_time if self.bucket_time > 0 else DEFAULT_BUCKET_TIME,
            bucket_nums=self.bucket_nums if self.bucket_nums > 0 else DEFAULT_BUCKET_NUMS,
            cooling_timeout=(
                self.cooling_timeout if self.cooling_timeout > 0 else DEFAULT_COOLING_TIMEOUT
            ),
            detect_timeout=(
                self.detect_timeout if self.detect_timeout > 0 else DEFAULT_DETECT_TIMEOUT
            ),
            half_open_successes=(
                self.half_open_successes
                if self.half_open_successes > 0
                else DEFAULT_HALF_OPEN_SUCCESSES
            ),
            now=self.now if self.now is not None else time.time,
        )