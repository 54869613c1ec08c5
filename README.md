# svckit

Building blocks for services that call other services:

- **Request metadata** (`svckit.metainfo`, `svckit.metainfo_http`): immutable
  contexts carrying transient and persistent key/value pairs along a call
  chain, plus a channel for passing values back to the caller. Helpers move
  metadata in and out of plain dictionaries and HTTP headers.
- **Circuit breakers** (`svckit.breaker`, `svckit.panel`, `svckit.trip`,
  `svckit.breaker_options`, `svckit.breaker_metrics`, `svckit.breaker_sharded`,
  `svckit.breaker_counter`): breakers that open after errors, cool down, probe
  in a half-open state and close again. A `Panel` keeps one breaker per key and
  slides their windows of statistics forward in the background.
- **Async cache** (`svckit.asynccache`): a cache whose entries are fetched once
  and then refreshed in the background, and optionally dropped when unused.

The package has no dependencies outside the standard library. It is a library
only: it installs no commands.

## Installation

```
pip install svckit
```

## Request metadata

```python
from svckit import metainfo

ctx = metainfo.background()
ctx = metainfo.with_value(ctx, "TRACE", "abc")             # reaches the next hop only
ctx = metainfo.with_persistent_value(ctx, "TENANT", "t1")  # travels the whole chain

metainfo.get_value(ctx, "TRACE")            # "abc"
metainfo.get_value(ctx, "MISSING")          # None
metainfo.get_all_persistent_values(ctx)     # {"TENANT": "t1"}

ctx = metainfo.del_value(ctx, "TRACE")      # get_value now returns None
```

Contexts are immutable: every `with_*` and `del_*` call returns a new one.
Empty keys and empty values are ignored by `with_value` and
`with_persistent_value`; deleting stores an empty value that hides older ones.
Passing `None` as the context gives `None` back.

`transfer_forward(ctx)` prepares a context for an outgoing call: transient
values become upstream values (still readable with `get_value`), and values
that were already upstream are dropped, so a transient value crosses exactly
one hop.

Dictionaries use the prefixes `RPC_TRANSIT_`, `RPC_TRANSIT_UPSTREAM_` and
`RPC_PERSIST_`:

```python
carrier = {}
metainfo.save_meta_info_to_map(ctx, carrier)   # forwards first, then writes prefixed keys
received = metainfo.set_meta_info_from_map(metainfo.background(), carrier)
```

`has_meta_info(ctx)` tells whether a context carries any of these values.

### Values passed back

```python
root = metainfo.with_backward_values(metainfo.background())
child = metainfo.with_value(root, "k", "v")

metainfo.set_backward_value(child, "status", "ok")   # True
metainfo.get_backward_value(root, "status")          # "ok"
metainfo.get_all_backward_values(root)               # {"status": "ok"}
```

The store is shared by the context and everything derived from it; calling
`with_backward_values` again on such a context returns it unchanged. On a
context without a store, `set_backward_value` returns `False` and the getters
return `None`.

### HTTP headers

Headers use the `rpc-transit-` and `rpc-persist-` prefixes. Header names are
turned into upper-case names with underscores (`abc-def` becomes `ABC_DEF`)
and back again with `http_header_to_cgi_variable` and
`cgi_variable_to_http_header`.

```python
from svckit.metainfo_http import HTTPHeader, from_http_header, to_http_header

header = HTTPHeader()          # a dict of lower-cased names to lists of values
to_http_header(ctx, header)
received = from_http_header(metainfo.background(), header)
```

`from_http_header` accepts any object with a `visit(visitor)` method and
`to_http_header` any object with a `set(key, value)` method; neither calls
`transfer_forward`.

## Circuit breakers

```python
from svckit.breaker_options import Options
from svckit.panel import Panel
from svckit.trip import rate_trip_func

with Panel(None, Options(should_trip=rate_trip_func(0.5, 100))) as panel:
    if panel.is_allowed("user-service"):
        try:
            call_user_service()
        except TimeoutError:
            panel.timeout("user-service")
        except Exception:
            panel.fail("user-service")
        else:
            panel.succeed("user-service")
```

A breaker is `State.CLOSED`, `State.OPEN` or `State.HALF_OPEN`:

- Closed lets every call through; after a failure or timeout it opens if the
  trip function says so.
- Open rejects calls until `cooling_timeout` seconds have passed, then the
  next `is_allowed` turns it half-open and lets that call through.
- Half-open lets one call through per `detect_timeout` seconds; after
  `half_open_successes` successes it closes and clears its statistics, and any
  error opens it again.

`Options` fields (durations in seconds; zero means the default): `bucket_time`
(0.1), `bucket_nums` (100, and at least 100), `cooling_timeout` (5.0),
`detect_timeout` (0.2), `half_open_successes` (2), `should_trip`,
`should_trip_with_key` (used by a panel instead of `should_trip`),
`breaker_state_change_handler` (called on a separate thread),
`enable_shard_p` (count successes in a `ShardedWindow`) and `now`.

A single `Breaker(options)` can be used on its own; it has `succeed`, `fail`,
`timeout`, `fail_with_trip`, `timeout_with_trip`, `is_allowed`, `state`,
`metricer` and `reset`. Its window only slides when `tick()` is called on it,
which a `Panel` does every `bucket_time` seconds for all its breakers until
`close()`. A panel's change handler receives the key as its first argument.
`dump_breakers`, `remove_breaker` and `get_metricer` give access to the
breakers of a panel.

Trip functions in `svckit.trip`:

- `threshold_trip_func(threshold)`: failures plus timeouts reach `threshold`.
- `consecutive_trip_func(threshold)`: errors since the last success reach
  `threshold`.
- `rate_trip_func(rate, min_samples)`: at least `min_samples` samples and an
  error rate of at least `rate`.
- `consecutive_trip_func_v2(rate, min_samples, duration, duration_samples,
  conse_errors)`: the rate rule, or a run of at least `duration_samples`
  errors lasting `duration` seconds, or `conse_errors` errors in a row.

The windows (`Window`, `ShardedWindow`) report `successes`, `failures`,
`timeouts`, `counts`, `samples`, `error_rate`, `conse_errors` and `conse_time`.

## Async cache

```python
from svckit.asynccache import AsyncCache, AsyncCacheOptions

with AsyncCache(AsyncCacheOptions(
    refresh_duration=1.0,
    fetcher=lambda key: load_from_database(key),
)) as cache:
    value = cache.get("config")
    fallback = cache.get_or_set("flags", {})
```

- `get(key)` fetches a key on first use; concurrent first calls share one
  fetch. If that fetch raises, the error is cached and raised again until a
  background refresh succeeds.
- `get_or_set(key, default)` returns `default`, and stores it, when the fetch
  fails or a cached error is present.
- `set_default(key, value)` stores a value only for a new key and returns
  whether the key already existed.
- `dump()` returns all cached values; `delete_if(predicate)` removes matching
  keys.
- Every `refresh_duration` seconds each key is fetched again. With
  `enable_expire=True` and a positive `expire_duration`, a key not read during
  two expire periods is removed.
- `error_handler`, `change_handler` (called when `is_same` says a refreshed
  value differs) and `delete_handler` run on separate threads.
  `err_log_func` receives messages about invalid keys.

Call `close()` (or leave the `with` block) to stop the background work.

## What it does not do

Everything lives in memory within one process: the cache has no persistent
storage and no size limit, and breaker statistics are not shared between
processes. There is no command-line tool and no server.

## Running the tests

```
pip install -e ".[test]"
pytest
```