"""A cache whose entries are fetched once and then refreshed in the background."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

_log = logging.getLogger(__name__)

Fetcher = Callable[[str], Any]
ErrorHandler = Callable[[str, BaseException], None]
ChangeHandler = Callable[[str, Any, Any], None]
DeleteHandler = Callable[[str, Any], None]
IsSame = Callable[[str, Any, Any], bool]


@dataclass
class AsyncCacheOptions:
    """Settings of an ``AsyncCache``; durations are in seconds.

    ``fetcher`` returns the value of a key or raises. When ``enable_expire``
    is set, ``expire_duration`` must be positive: an entry not read during
    two expire periods is dropped.
    """

    refresh_duration: float
    fetcher: Fetcher
    enable_expire: bool = False
    expire_duration: float = 0.0
    error_handler: Optional[ErrorHandler] = None
    change_handler: Optional[ChangeHandler] = None
    delete_handler: Optional[DeleteHandler] = None
    is_same: Optional[IsSame] = None
    err_log_func: Optional[Callable[[str], None]] = None


class _Entry:
    __slots__ = ("value", "error", "expiring")

    def __init__(self, value: Any, error: Optional[BaseException] = None) -> None:
        self.value = value
        self.error = error
        self.expiring = False

    def store(self, value: Any, error: Optional[BaseException]) -> None:
        self.value = value
        self.error = error

    def touch(self) -> None:
        self.expiring = False


class _Call:
    __slots__ = ("done", "value", "error")

    def __init__(self) -> None:
        self.done = threading.Event()
        self.value: Any = None
        self.error: Optional[BaseException] = None


class _SingleFlight:
    """Runs at most one call per key at a time; waiters share its outcome."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: dict[str, _Call] = {}

    def do(self, key: str, fn: Callable[[], Any]) -> Any:
        with self._lock:
            call = self._calls.get(key)
            leader = call is None
            if call is None:
                call = self._calls[key] = _Call()
        if leader:
            try:
                call.value = fn()
            except Exception as exc:
                call.error = exc
            finally:
                with self._lock:
                    del self._calls[key]
                call.done.set()
        else:
            call.done.wait()
        if call.error is not None:
            raise call.error
        return call.value


def _spawn(fn: Callable[..., Any], *args: Any) -> None:
    threading.Thread(target=fn, args=args, daemon=True).start()


class _SharedTicker:
    """Periodically refreshes or expires every cache registered with it."""

    def __init__(self, interval: float, action: Callable[["AsyncCache"], None]) -> None:
        self._interval = interval
        self._action = action
        self._lock = threading.Lock()
        self._caches: set[AsyncCache] = set()
        self._stop: Optional[threading.Event] = None

    def register(self, cache: "AsyncCache") -> None:
        with self._lock:
            self._caches.add(cache)
            if self._stop is None:
                self._stop = threading.Event()
                threading.Thread(
                    target=self._run,
                    args=(self._stop,),
                    daemon=True,
                    name=f"asynccache-ticker-{self._interval}",
                ).start()

    def unregister(self, cache: "AsyncCache") -> None:
        with self._lock:
            self._caches.discard(cache)
            if not self._caches and self._stop is not None:
                self._stop.set()
                self._stop = None

    def _run(self, stop: threading.Event) -> None:
        while not stop.wait(self._interval):
            with self._lock:
                if stop.is_set():
                    return
                for cache in list(self._caches):
                    self._action(cache)


_tickers: dict[tuple[str, float], _SharedTicker] = {}
_tickers_lock = threading.Lock()


def _ticker_for(kind: str, interval: float) -> _SharedTicker:
    with _tickers_lock:
        ticker = _tickers.get((kind, interval))
        if ticker is None:
            action = AsyncCache.expire if kind == "expire" else AsyncCache.refresh
            ticker = _tickers[(kind, interval)] = _SharedTicker(interval, action)
        return ticker


class AsyncCache:
    """A key/value cache refreshed in the background by a fetcher.

    Call ``close`` when the cache is no longer needed, or use it as a
    context manager; otherwise its background refresh keeps running.
    """

    def __init__(self, options: AsyncCacheOptions) -> None:
        if options.refresh_duration <= 0:
            raise ValueError("asynccache: invalid refresh_duration")
        if options.enable_expire and options.expire_duration <= 0:
            raise ValueError("asynccache: invalid expire_duration")
        self._options = options
        self._log = options.err_log_func or _log.error
        self._lock = threading.Lock()
        self._data: dict[str, _Entry] = {}
        self._flight = _SingleFlight()
        self._closed = False

        self._expire_ticker: Optional[_SharedTicker] = None
        if options.enable_expire:
            self._expire_ticker = _ticker_for("expire", options.expire_duration)
            self._expire_ticker.register(self)
        self._refresh_ticker = _ticker_for("refresh", options.refresh_duration)
        self._refresh_ticker.register(self)

    def _lookup(self, key: str) -> Optional[_Entry]:
        with self._lock:
            return self._data.get(key)

    def _put(self, key: str, entry: _Entry) -> None:
        with self._lock:
            self._data[key] = entry

    def _discard(self, key: Any) -> None:
        with self._lock:
            self._data.pop(key, None)

    def _snapshot(self) -> list[tuple[Any, _Entry]]:
        with self._lock:
            return list(self._data.items())

    def _valid_key(self, key: Any) -> bool:
        if isinstance(key, str):
            return True
        self._log(f"invalid key: {key!r}, type: {type(key).__name__} is not string")
        self._discard(key)
        return False

    def set_default(self, key: str, value: Any) -> bool:
        """Store ``value`` for a key new to the cache; True if the key existed."""
        with self._lock:
            existing = self._data.get(key)
            if existing is None:
                self._data[key] = _Entry(value)
                return False
        existing.touch()
        return True

    def get(self, key: str) -> Any:
        """Return the cached value, fetching it on first use.

        If the first fetch fails, its error is cached and raised again until
        a background refresh succeeds.
        """
        entry = self._lookup(key)
        if entry is not None:
            entry.touch()
            if entry.error is not None:
                raise entry.error
            return entry.value

        def load() -> Any:
            try:
                value, error = self._options.fetcher(key), None
            except Exception as exc:
                value, error = None, exc
            self._put(key, _Entry(value, error))
            if error is not None:
                raise error
            return value

        return self._flight.do(key, load)

    def get_or_set(self, key: str, default: Any) -> Any:
        """Return the cached value, storing ``default`` if fetching failed."""
        entry = self._lookup(key)
        if entry is not None:
            if entry.error is not None:
                self._put(key, _Entry(default))
                return default
            entry.touch()
            return entry.value

        def load() -> Any:
            try:
                value = self._options.fetcher(key)
            except Exception:
                value = default
            self._put(key, _Entry(value))
            return value

        return self._flight.do(key, load)

    def dump(self) -> dict[str, Any]:
        """Return all cached values without touching their expiry."""
        return {
            key: entry.value for key, entry in self._snapshot() if self._valid_key(key)
        }

    def delete_if(self, should_delete: Callable[[str], bool]) -> None:
        """Delete the entries whose key matches ``should_delete``."""
        handler = self._options.delete_handler
        for key, entry in self._snapshot():
            if should_delete(key):
                if handler is not None:
                    _spawn(handler, key, entry.value)
                self._discard(key)

    def expire(self) -> None:
        """Drop entries not read since the previous expire pass; mark the rest."""
        handler = self._options.delete_handler
        for key, entry in self._snapshot():
            if not self._valid_key(key):
                continue
            with self._lock:
                was_expiring = entry.expiring
                entry.expiring = True
            if was_expiring:
                if handler is not None:
                    _spawn(handler, key, entry.value)
                self._discard(key)

    def refresh(self) -> None:
        """Fetch every cached key again and store the new values."""
        opts = self._options
        for key, entry in self._snapshot():
            if not self._valid_key(key):
                continue
            try:
                new_value = opts.fetcher(key)
            except Exception as exc:
                if opts.error_handler is not None:
                    _spawn(opts.error_handler, key, exc)
                if entry.error is not None:
                    entry.error = exc
                continue
            old_value = entry.value
            if opts.is_same is not None and not opts.is_same(key, old_value, new_value):
                if opts.change_handler is not None:
                    _spawn(opts.change_handler, key, old_value, new_value)
            entry.store(new_value, None)

    def close(self) -> None:
        """Stop the background refresh and expiry of this cache."""
        if self._closed:
            return
        self._closed = True
        self._refresh_ticker.unregister(self)
        if self._expire_ticker is not None:
            self._expire_ticker.unregister(self)

    def __enter__(self) -> "AsyncCache":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()