"""A set of circuit breakers keyed by name, with shared metric tickers."""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Optional

from .breaker import Breaker, MetricWindow
from .breaker_options import Options, PanelStateChangeHandler
from .trip import TripFunc


class _SharedTicker:
    """Advances the metric windows of every panel using one bucket time."""

    def __init__(self, interval: float) -> None:
        self._interval = interval
        self._lock = threading.Lock()
        self._panels: set[Panel] = set()
        self._stop: Optional[threading.Event] = None

    def register(self, panel: "Panel") -> None:
        with self._lock:
            self._panels.add(panel)
            if self._stop is None:
                self._stop = threading.Event()
                threading.Thread(
                    target=self._run,
                    args=(self._stop,),
                    daemon=True,
                    name=f"breaker-ticker-{self._interval}",
                ).start()

    def unregister(self, panel: "Panel") -> None:
        with self._lock:
            self._panels.discard(panel)
            if not self._panels and self._stop is not None:
                self._stop.set()
                self._stop = None

    def _run(self, stop: threading.Event) -> None:
        while not stop.wait(self._interval):
            with self._lock:
                if stop.is_set():
                    return
                for panel in self._panels:
                    panel._tick()


_tickers: dict[float, _SharedTicker] = {}
_tickers_lock = threading.Lock()


def _ticker_for(interval: float) -> _SharedTicker:
    with _tickers_lock:
        ticker = _tickers.get(interval)
        if ticker is None:
            ticker = _tickers[interval] = _SharedTicker(interval)
        return ticker


class Panel:
    """Manages one breaker per key, created on first use.

    Call ``close`` when the panel is no longer needed, or use it as a
    context manager; after that its metrics stop sliding.
    """

    def __init__(
        self,
        change_handler: Optional[PanelStateChangeHandler] = None,
        options: Optional[Options] = None,
    ) -> None:
        opts = (options or Options()).with_defaults()
        Breaker(opts)  # fails early on settings no breaker accepts
        self._options = opts
        self._change_handler = change_handler
        self._lock = threading.Lock()
        self._breakers: dict[str, Breaker] = {}
        self._ticker = _ticker_for(opts.bucket_time)
        self._ticker.register(self)

    def _get_breaker(self, key: str) -> Breaker:
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                opts = self._options
                handler = self._change_handler
                if handler is not None:
                    opts = replace(
                        opts,
                        breaker_state_change_handler=lambda old, new, m: handler(
                            key, old, new, m
                        ),
                    )
                breaker = self._breakers[key] = Breaker(opts)
            return breaker

    def _tick(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.metricer().tick()

    def succeed(self, key: str) -> None:
        """Record a success for ``key``."""
        self._get_breaker(key).succeed()

    def fail(self, key: str) -> None:
        """Record a failure for ``key``."""
        breaker = self._get_breaker(key)
        if self._options.should_trip_with_key is not None:
            breaker.fail_with_trip(self._options.should_trip_with_key(key))
        else:
            breaker.fail()

    def fail_with_trip(self, key: str, trip: Optional[TripFunc]) -> None:
        """Record a failure for ``key``, judged by ``trip``."""
        self._get_breaker(key).fail_with_trip(trip)

    def timeout(self, key: str) -> None:
        """Record a timeout for ``key``."""
        breaker = self._get_breaker(key)
        if self._options.should_trip_with_key is not None:
            breaker.timeout_with_trip(self._options.should_trip_with_key(key))
        else:
            breaker.timeout()

    def timeout_with_trip(self, key: str, trip: Optional[TripFunc]) -> None:
        """Record a timeout for ``key``, judged by ``trip``."""
        self._get_breaker(key).timeout_with_trip(trip)

    def is_allowed(self, key: str) -> bool:
        """Tell whether a call for ``key`` may go through now."""
        return self._get_breaker(key).is_allowed()

    def remove_breaker(self, key: str) -> None:
        """Forget the breaker of ``key``."""
        with self._lock:
            self._breakers.pop(key, None)

    def dump_breakers(self) -> dict[str, Breaker]:
        """Return a copy of the key-to-breaker mapping."""
        with self._lock:
            return dict(self._breakers)

    def get_metricer(self, key: str) -> MetricWindow:
        """Return the metrics of the breaker of ``key``."""
        return self._get_breaker(key).metricer()

    def close(self) -> None:
        """Stop sliding this panel's metric windows."""
        self._ticker.unregister(self)

    def __enter__(self) -> "Panel":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()