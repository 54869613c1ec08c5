"""Carry metainfo through HTTP headers."""

from __future__ import annotations

from typing import Callable, Optional, Protocol

from .metainfo import (
    Context,
    get_all_persistent_values,
    get_all_values,
    with_persistent_value,
    with_value,
)

HTTP_PREFIX_TRANSIENT = "rpc-transit-"
HTTP_PREFIX_PERSISTENT = "rpc-persist-"


def http_header_to_cgi_variable(key: str) -> str:
    """Convert an HTTP header key such as ``abc-def`` to ``ABC_DEF``."""
    return key.replace("-", "_").upper()


def cgi_variable_to_http_header(key: str) -> str:
    """Convert a CGI variable such as ``ABC_DEF`` to ``abc-def``."""
    return key.replace("_", "-").lower()


class HeaderSetter(Protocol):
    def set(self, key: str, value: str) -> None: ...


class HeaderCarrier(Protocol):
    def visit(self, visitor: Callable[[str, str], None]) -> None: ...


class HTTPHeader(dict):
    """A header mapping of names to lists of values."""

    def visit(self, visitor: Callable[[str, str], None]) -> None:
        """Call ``visitor`` with each name and its first value."""
        for key, values in self.items():
            visitor(key, values[0])

    def set(self, key: str, value: str) -> None:
        """Replace the values of ``key``, lower-cased, with ``value``."""
        self[key.lower()] = [value]


def from_http_header(
    ctx: Optional[Context], header: Optional[HeaderCarrier]
) -> Optional[Context]:
    """Read prefixed metainfo headers into the context."""
    if ctx is None or header is None:
        return ctx

    entries: list[tuple[str, str]] = []
    header.visit(lambda k, v: entries.append((k, v)))

    for key, value in entries:
        lowered = key.lower()
        if len(lowered) > len(HTTP_PREFIX_TRANSIENT) and lowered.startswith(
            HTTP_PREFIX_TRANSIENT
        ):
            name = http_header_to_cgi_variable(lowered[len(HTTP_PREFIX_TRANSIENT):])
            ctx = with_value(ctx, name, value)
        elif len(lowered) > len(HTTP_PREFIX_PERSISTENT) and lowered.startswith(
            HTTP_PREFIX_PERSISTENT
        ):
            name = http_header_to_cgi_variable(lowered[len(HTTP_PREFIX_PERSISTENT):])
            ctx = with_persistent_value(ctx, name, value)
    return ctx


def to_http_header(ctx: Optional[Context], header: Optional[HeaderSetter]) -> None:
    """Write the context's metainfo into prefixed headers."""
    if ctx is None or header is None:
        return
    for key, value in (get_all_values(ctx) or {}).items():
        header.set(HTTP_PREFIX_TRANSIENT + cgi_variable_to_http_header(key), value)
    for key, value in (get_all_persistent_values(ctx) or {}).items():
        header.set(HTTP_PREFIX_PERSISTENT + cgi_variable_to_http_header(key), value)