"""Ready-made decisions on whether a circuit breaker should trip."""

from __future__ import annotations

from typing import Callable

from .breaker_metrics import Metricer

TripFunc = Callable[[Metricer], bool]
TripFuncWithKey = Callable[[str], TripFunc]


def threshold_trip_func(threshold: int) -> TripFunc:
    """Trip once failures plus timeouts reach ``threshold``."""

    def trip(m: Metricer) -> bool:
        return m.failures() + m.timeouts() >= threshold

    return trip


def consecutive_trip_func(threshold: int) -> TripFunc:
    """Trip once consecutive errors reach ``threshold``."""

    def trip(m: Metricer) -> bool:
        return m.conse_errors() >= threshold

    return trip


def rate_trip_func(rate: float, min_samples: int) -> TripFunc:
    """Trip once there are ``min_samples`` samples and the error rate reaches ``rate``."""

    def trip(m: Metricer) -> bool:
        return m.samples() >= min_samples and m.error_rate() >= rate

    return trip


def consecutive_trip_func_v2(
    rate: float,
    min_samples: int,
    duration: float,
    duration_samples: int,
    conse_errors: int,
) -> TripFunc:
    """Trip when any of three conditions holds.

    1. samples >= ``min_samples`` and error rate >= ``rate``;
    2. ``duration`` > 0, consecutive errors >= ``duration_samples`` and
       they have lasted at least ``duration`` seconds;
    3. ``conse_errors`` > 0 and consecutive errors >= ``conse_errors``.
    """

    def trip(m: Metricer) -> bool:
        if m.samples() >= min_samples and m.error_rate() >= rate:
            return True
        if duration > 0 and m.conse_errors() >= duration_samples and m.conse_time() >= duration:
            return True
        if conse_errors > 0 and m.conse_errors() >= conse_errors:
            return True
        return False

    return trip