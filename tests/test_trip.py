from dataclasses import dataclass

from svckit.breaker_metrics import Metricer, Window
from svckit.trip import (
    consecutive_trip_func,
    consecutive_trip_func_v2,
    rate_trip_func,
    threshold_trip_func,
)


@dataclass
class FakeMetricer(Metricer):
    ok: int = 0
    failed: int = 0
    timed_out: int = 0
    consecutive: int = 0
    consecutive_seconds: float = 0.0

    def failures(self):
        return self.failed

    def successes(self):
        return self.ok

    def timeouts(self):
        return self.timed_out

    def conse_errors(self):
        return self.consecutive

    def conse_time(self):
        return self.consecutive_seconds

    def error_rate(self):
        total = self.samples()
        return 0.0 if total == 0 else (self.failed + self.timed_out) / total

    def samples(self):
        return self.ok + self.failed + self.timed_out

    def counts(self):
        return self.ok, self.failed, self.timed_out


def test_threshold_counts_failures_and_timeouts():
    trip = threshold_trip_func(3)
    assert trip(FakeMetricer(failed=2)) is False
    assert trip(FakeMetricer(failed=2, timed_out=1)) is True
    assert trip(FakeMetricer(ok=100, failed=1, timed_out=1)) is False


def test_threshold_with_real_window():
    window = Window()
    trip = threshold_trip_func(2)
    window.fail()
    assert trip(window) is False
    window.timeout()
    assert trip(window) is True


def test_consecutive_uses_consecutive_errors():
    trip = consecutive_trip_func(5)
    assert trip(FakeMetricer(failed=10, consecutive=4)) is False
    assert trip(FakeMetricer(consecutive=5)) is True


def test_consecutive_resets_after_success_on_window():
    window = Window()
    trip = consecutive_trip_func(2)
    window.fail()
    window.succeed()
    window.fail()
    assert trip(window) is False
    window.timeout()
    assert trip(window) is True


def test_rate_needs_min_samples_and_rate():
    trip = rate_trip_func(0.5, 10)
    assert trip(FakeMetricer(ok=5, failed=5)) is True
    assert trip(FakeMetricer(ok=5, failed=4)) is False
    assert trip(FakeMetricer(ok=6, failed=4)) is False
    assert trip(FakeMetricer()) is False


def test_v2_rate_branch():
    trip = consecutive_trip_func_v2(0.5, 4, 0, 0, 0)
    assert trip(FakeMetricer(ok=2, failed=2)) is True
    assert trip(FakeMetricer(ok=2, failed=1)) is False


def test_v2_duration_branch():
    trip = consecutive_trip_func_v2(0.5, 1000, 3.0, 50, 0)
    assert trip(FakeMetricer(timed_out=50, consecutive=50, consecutive_seconds=3.0)) is True
    assert trip(FakeMetricer(timed_out=50, consecutive=50, consecutive_seconds=2.9)) is False
    assert trip(FakeMetricer(timed_out=49, consecutive=49, consecutive_seconds=10.0)) is False


def test_v2_duration_disabled_when_zero():
    trip = consecutive_trip_func_v2(0.5, 1000, 0, 1, 0)
    assert trip(FakeMetricer(failed=5, consecutive=5, consecutive_seconds=100.0)) is False


def test_v2_consecutive_branch():
    trip = consecutive_trip_func_v2(0.5, 1000, 0, 0, 500)
    assert trip(FakeMetricer(failed=500, consecutive=500)) is True
    assert trip(FakeMetricer(failed=499, consecutive=499)) is False


def test_v2_consecutive_disabled_when_zero():
    trip = consecutive_trip_func_v2(0.5, 1000, 0, 0, 0)
    assert trip(FakeMetricer(failed=999, consecutive=999)) is False