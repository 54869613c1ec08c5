"""Request-scoped metadata carried along an immutable context chain.

Values come in three flavours: transient values travel to the next hop
only, transient-upstream values are transient values received from the
previous hop, and persistent values travel along the whole call chain.
Empty keys and empty values are not supported; an empty value marks a
deletion.
"""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping, MutableMapping, Optional

PREFIX_PERSISTENT = "RPC_PERSIST_"
PREFIX_TRANSIENT = "RPC_TRANSIT_"
PREFIX_TRANSIENT_UPSTREAM = "RPC_TRANSIT_UPSTREAM_"

_UNSET = object()


class Context:
    """An immutable chain of key/value bindings, each deriving from a parent."""

    __slots__ = ("_parent", "_key", "_value")

    def __init__(self, parent: Optional["Context"] = None, key: Any = _UNSET, value: Any = None):
        self._parent = parent
        self._key = key
        self._value = value

    def with_value(self, key: Any, value: Any) -> "Context":
        """Return a child context binding ``key`` to ``value``."""
        return Context(self, key, value)

    def value(self, key: Any) -> Any:
        """Return the nearest value bound to ``key``, or None."""
        node: Optional[Context] = self
        while node is not None:
            if node._key is not _UNSET and node._key == key:
                return node._value
            node = node._parent
        return None


_BACKGROUND = Context()


def background() -> Context:
    """Return the empty root context."""
    return _BACKGROUND


class _InfoType(enum.IntFlag):
    INVALID = 0
    TRANSIENT_UPSTREAM = 2
    TRANSIENT = 4
    PERSISTENT = 8


_TRANSIENT_ANY = _InfoType.TRANSIENT_UPSTREAM | _InfoType.TRANSIENT

_CTX_KEY = object()
_BACKWARD_KEY = object()


@dataclass(frozen=True)
class _Pair:
    pre: Optional["_Pair"]
    mode: _InfoType
    key: str
    val: str


def _get_kv(ctx: Optional[Context]) -> Optional[_Pair]:
    if ctx is None:
        return None
    kv = ctx.value(_CTX_KEY)
    return kv if isinstance(kv, _Pair) else None


def _iter_pairs(ctx: Optional[Context]) -> Iterator[_Pair]:
    kv = _get_kv(ctx)
    while kv is not None:
        yield kv
        kv = kv.pre


def _add_kv(ctx: Optional[Context], mode: _InfoType, key: str, val: str) -> Optional[Context]:
    if ctx is None:
        return None
    return ctx.with_value(_CTX_KEY, _Pair(_get_kv(ctx), mode, key, val))


def _get_v(ctx: Optional[Context], mode: _InfoType, key: str) -> Optional[str]:
    for kv in _iter_pairs(ctx):
        if kv.key == key and kv.mode & mode:
            return kv.val or None
    return None


def _get_all(ctx: Optional[Context], mode: _InfoType) -> dict[str, str]:
    newest: dict[str, str] = {}
    for kv in _iter_pairs(ctx):
        if kv.mode & mode and kv.key not in newest:
            newest[kv.key] = kv.val
    return {k: v for k, v in newest.items() if v}


def _copy_link(
    ctx: Context,
    modifier: Callable[[_Pair], Optional[tuple[_InfoType, str, str]]],
) -> Context:
    """Rebuild the pair chain through ``modifier``; None drops a pair."""
    kept = [item for item in map(modifier, _iter_pairs(ctx)) if item is not None]
    head: Optional[_Pair] = None
    for mode, key, val in reversed(kept):
        head = _Pair(head, mode, key, val)
    return ctx.with_value(_CTX_KEY, head)


def transfer_forward(ctx: Optional[Context]) -> Optional[Context]:
    """Turn transient values into upstream ones and drop the old upstream values."""
    if ctx is None:
        return None

    def forward(kv: _Pair) -> Optional[tuple[_InfoType, str, str]]:
        if kv.mode == _InfoType.TRANSIENT_UPSTREAM:
            return None
        mode = _InfoType.TRANSIENT_UPSTREAM if kv.mode == _InfoType.TRANSIENT else kv.mode
        return mode, kv.key, kv.val

    return _copy_link(ctx, forward)


def get_value(ctx: Optional[Context], key: str) -> Optional[str]:
    """Return the transient value for ``key``, or None."""
    return _get_v(ctx, _TRANSIENT_ANY, key)


def get_all_values(ctx: Optional[Context]) -> Optional[dict[str, str]]:
    """Return all transient values, or None for a missing context."""
    if ctx is None:
        return None
    return _get_all(ctx, _TRANSIENT_ANY)


def with_value(ctx: Optional[Context], key: str, value: str) -> Optional[Context]:
    """Attach a transient value that reaches the next hop only."""
    if not key or not value:
        return ctx
    return _add_kv(ctx, _InfoType.TRANSIENT, key, value)


def del_value(ctx: Optional[Context], key: str) -> Optional[Context]:
    """Mark the transient value for ``key`` as deleted."""
    if not key:
        return ctx
    return _add_kv(ctx, _InfoType.TRANSIENT, key, "")


def get_persistent_value(ctx: Optional[Context], key: str) -> Optional[str]:
    """Return the persistent value for ``key``, or None."""
    return _get_v(ctx, _InfoType.PERSISTENT, key)


def get_all_persistent_values(ctx: Optional[Context]) -> Optional[dict[str, str]]:
    """Return all persistent values, or None for a missing context."""
    if ctx is None:
        return None
    return _get_all(ctx, _InfoType.PERSISTENT)


def with_persistent_value(ctx: Optional[Context], key: str, value: str) -> Optional[Context]:
    """Attach a value that travels along the whole call chain."""
    if not key or not value:
        return ctx
    return _add_kv(ctx, _InfoType.PERSISTENT, key, value)


def del_persistent_value(ctx: Optional[Context], key: str) -> Optional[Context]:
    """Mark the persistent value for ``key`` as deleted."""
    if not key:
        return ctx
    return _add_kv(ctx, _InfoType.PERSISTENT, key, "")


def has_meta_info(ctx: Optional[Context]) -> bool:
    """Tell whether the context carries any metainfo."""
    return _get_kv(ctx) is not None


def _determine_key_type(key: str, value: str) -> tuple[_InfoType, str]:
    if not key or not value:
        return _InfoType.INVALID, key
    for prefix, mode in (
        (PREFIX_TRANSIENT_UPSTREAM, _InfoType.TRANSIENT_UPSTREAM),
        (PREFIX_TRANSIENT, _InfoType.TRANSIENT),
        (PREFIX_PERSISTENT, _InfoType.PERSISTENT),
    ):
        if key.startswith(prefix):
            if len(key) > len(prefix):
                return mode, key[len(prefix):]
            return _InfoType.INVALID, key
    return _InfoType.INVALID, key


def set_meta_info_from_map(
    ctx: Optional[Context], mapping: Optional[Mapping[str, str]]
) -> Optional[Context]:
    """Load prefixed key/value pairs from ``mapping`` into the context."""
    if ctx is None:
        return None
    for key, value in (mapping or {}).items():
        mode, new_key = _determine_key_type(key, value)
        if mode != _InfoType.INVALID:
            ctx = _add_kv(ctx, mode, new_key, value)
    return ctx


def save_meta_info_to_map(
    ctx: Optional[Context], mapping: Optional[MutableMapping[str, str]]
) -> None:
    """Write the context's metainfo into ``mapping`` with prefixed keys.

    Upstream values are left out, as they would be when forwarding.
    """
    if ctx is None or mapping is None:
        return
    forwarded = transfer_forward(ctx)
    for key, value in (get_all_values(forwarded) or {}).items():
        mapping[PREFIX_TRANSIENT + key] = value
    for key, value in (get_all_persistent_values(forwarded) or {}).items():
        mapping[PREFIX_PERSISTENT + key] = value


class _BackwardStore:
    """Thread-safe key/value store shared by a context and its descendants."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, str] = {}

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._data)


def _backward_store(ctx: Optional[Context]) -> Optional[_BackwardStore]:
    if ctx is None:
        return None
    store = ctx.value(_BACKWARD_KEY)
    return store if isinstance(store, _BackwardStore) else None


def with_backward_values(ctx: Context) -> Context:
    """Return a context through which derived contexts can pass values back."""
    if ctx is None:
        raise TypeError("a context is required")
    if _backward_store(ctx) is not None:
        return ctx
    return ctx.with_value(_BACKWARD_KEY, _BackwardStore())


def set_backward_value(ctx: Optional[Context], key: str, value: str) -> bool:
    """Store a backward value; False if the context cannot carry one."""
    store = _backward_store(ctx)
    if store is None:
        return False
    store.set(key, value)
    return True


def get_backward_value(ctx: Optional[Context], key: str) -> Optional[str]:
    """Return the backward value for ``key``, or None."""
    store = _backward_store(ctx)
    return None if store is None else store.get(key)


def get_all_backward_values(ctx: Optional[Context]) -> Optional[dict[str, str]]:
    """Return all backward values, or None if the context cannot carry them."""
    store = _backward_store(ctx)
    return None if store is None else store.snapshot()