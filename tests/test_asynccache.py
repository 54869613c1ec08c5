import threading
import time

import pytest

from svckit.asynccache import AsyncCache, AsyncCacheOptions


@pytest.fixture
def make_cache():
    caches = []

    def make(**kwargs):
        cache = AsyncCache(AsyncCacheOptions(**kwargs))
        caches.append(cache)
        return cache

    yield make
    for cache in caches:
        cache.close()


def _never_same(key, old, new):
    return False


def _failing(key):
    raise RuntimeError("error")


def test_get_ok(make_cache):
    state = {"ret": "ret"}
    cache = make_cache(
        refresh_duration=0.4, is_same=_never_same, fetcher=lambda k: state["ret"]
    )
    assert cache.get("key") == "ret"

    time.sleep(0.2)
    state["ret"] = "change"
    assert cache.get("key") == "ret"

    time.sleep(0.4)
    assert cache.get("key") == "change"


def test_get_err(make_cache):
    state = {"first": True}

    def fetcher(key):
        if state["first"]:
            state["first"] = False
            raise RuntimeError("error")
        return "ret"

    cache = make_cache(refresh_duration=0.44, is_same=_never_same, fetcher=fetcher)
    with pytest.raises(RuntimeError) as first:
        cache.get("key")

    time.sleep(0.2)
    with pytest.raises(RuntimeError) as second:
        cache.get("key")
    assert second.value is first.value

    time.sleep(0.41)
    assert cache.get("key") == "ret"


def test_get_or_set_ok(make_cache):
    state = {"ret": "ret"}
    cache = make_cache(
        refresh_duration=0.4, is_same=_never_same, fetcher=lambda k: state["ret"]
    )
    assert cache.get_or_set("key", "def") == "ret"

    time.sleep(0.2)
    state["ret"] = "change"
    assert cache.get_or_set("key", "def") == "ret"

    time.sleep(0.4)
    assert cache.get_or_set("key", "def") == "change"


def test_get_or_set_err(make_cache):
    state = {"first": True}

    def fetcher(key):
        if state["first"]:
            state["first"] = False
            raise RuntimeError("error")
        return "ret"

    cache = make_cache(refresh_duration=0.5, is_same=_never_same, fetcher=fetcher)
    assert cache.get_or_set("key", "def") == "def"

    time.sleep(0.2)
    assert cache.get_or_set("key", "ret") == "def"

    time.sleep(0.5)
    assert cache.get_or_set("key", "def") == "ret"


def test_set_default(make_cache):
    cache = make_cache(refresh_duration=1.0, is_same=_never_same, fetcher=_failing)

    assert cache.get_or_set("key1", "def1") == "def1"

    assert cache.set_default("key2", "val2") is False
    assert cache.get_or_set("key2", "def2") == "val2"

    assert cache.set_default("key2", "val3") is True
    assert cache.get_or_set("key2", "def2") == "val2"


def test_delete_if(make_cache):
    cache = make_cache(refresh_duration=1.0, is_same=_never_same, fetcher=_failing)

    cache.set_default("key", "val")
    assert cache.get_or_set("key", "def") == "val"

    cache.delete_if(lambda key: True)
    assert cache.get_or_set("key", "def") == "def"


def test_close(make_cache):
    state = {"count": 0}

    def fetcher(key):
        state["count"] += 1
        return state["count"]

    cache = make_cache(
        refresh_duration=0.2,
        is_same=_never_same,
        fetcher=fetcher,
        enable_expire=True,
        expire_duration=1.0,
    )
    assert cache.get_or_set("key", 10) == 1

    time.sleep(0.25)
    assert cache.get_or_set("key", 10) == 2

    time.sleep(0.2)
    assert cache.get_or_set("key", 10) == 3

    cache.close()

    time.sleep(0.25)
    assert cache.get_or_set("key", 10) == 3


def test_expire(make_cache):
    state = {"trigger": False}

    def fetcher(key):
        state["trigger"] = True
        return ""

    cache = make_cache(
        enable_expire=True,
        expire_duration=180.0,
        refresh_duration=60.0,
        is_same=lambda k, o, n: True,
        fetcher=fetcher,
    )

    cache.set_default("key-default", "")
    cache.set_default("key-alive", "")
    assert cache.get_or_set("key-alive", "") == ""
    assert state["trigger"] is False

    assert cache.get("key-expire") == ""
    assert state["trigger"] is True

    cache.expire()

    state["trigger"] = False
    assert cache.get("key-alive") == ""
    assert state["trigger"] is False

    cache.expire()
    cache.refresh()
    assert cache.dump() == {"key-alive": ""}

    state["trigger"] = False
    assert cache.get("key-alive") == ""
    assert state["trigger"] is False
    state["trigger"] = False
    assert cache.get("key-default") == ""
    assert state["trigger"] is True
    state["trigger"] = False
    assert cache.get("key-expire") == ""
    assert state["trigger"] is True


def test_expire_requires_duration():
    with pytest.raises(ValueError):
        AsyncCache(
            AsyncCacheOptions(refresh_duration=1.0, fetcher=_failing, enable_expire=True)
        )


def test_refresh_requires_duration():
    with pytest.raises(ValueError):
        AsyncCache(AsyncCacheOptions(refresh_duration=0.0, fetcher=_failing))


def test_dump_returns_all_values(make_cache):
    cache = make_cache(refresh_duration=60.0, fetcher=lambda k: k.upper())
    cache.set_default("a", 1)
    cache.get("b")
    assert cache.dump() == {"a": 1, "b": "B"}


def test_change_handler_called_on_refresh(make_cache):
    seen = []
    done = threading.Event()

    def on_change(key, old, new):
        seen.append((key, old, new))
        done.set()

    cache = make_cache(
        refresh_duration=60.0,
        fetcher=lambda k: "new",
        is_same=_never_same,
        change_handler=on_change,
    )
    cache.set_default("k", "old")
    cache.refresh()
    assert done.wait(2.0)
    assert seen == [("k", "old", "new")]
    assert cache.get("k") == "new"


def test_refresh_error_keeps_old_value(make_cache):
    seen = []
    done = threading.Event()

    def on_error(key, err):
        seen.append((key, str(err)))
        done.set()

    cache = make_cache(refresh_duration=60.0, fetcher=_failing, error_handler=on_error)
    cache.set_default("k", "kept")
    cache.refresh()
    assert done.wait(2.0)
    assert seen == [("k", "error")]
    assert cache.get("k") == "kept"


def test_delete_handler_called(make_cache):
    seen = []
    done = threading.Event()

    def on_delete(key, value):
        seen.append((key, value))
        done.set()

    cache = make_cache(refresh_duration=60.0, fetcher=_failing, delete_handler=on_delete)
    cache.set_default("drop", "x")
    cache.set_default("keep", "y")
    cache.delete_if(lambda key: key == "drop")
    assert done.wait(2.0)
    assert seen == [("drop", "x")]
    assert cache.dump() == {"keep": "y"}


def test_concurrent_gets_fetch_once(make_cache):
    calls = []
    gate = threading.Event()

    def fetcher(key):
        calls.append(key)
        gate.wait(2.0)
        return "v"

    cache = make_cache(refresh_duration=60.0, fetcher=fetcher)
    results = []
    threads = [
        threading.Thread(target=lambda: results.append(cache.get("k")))
        for _ in range(5)
    ]
    for thread in threads:
        thread.start()
    time.sleep(0.1)
    gate.set()
    for thread in threads:
        thread.join()

    assert results == ["v"] * 5
    assert cache.get("k") == "v"
    assert cache.dump() == {"k": "v"}
    assert calls == ["k"]