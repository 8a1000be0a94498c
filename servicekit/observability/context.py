"""Immutable request context carrying bound log fields.

A `Context` is a value: binding fields or values returns a new instance and never
touches the parent, so two callers deriving from the same parent concurrently can
not observe each other's additions. The field list is a tuple, which makes the
copy-on-append rule hold by construction.

Most code never passes a context explicitly: `use_context()` installs one in a
`ContextVar` for the duration of a block (the HTTP middleware does this per request)
and loggers fall back to `current_context()` when called without one.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from servicekit.observability.fields import Field


def _empty_values() -> Mapping[str, Any]:
    return MappingProxyType({})


@dataclass(frozen=True, eq=False)
class Context:
    fields: tuple[Field, ...] = ()
    values: Mapping[str, Any] = field(default_factory=_empty_values)

    def with_value(self, key: str, val: Any) -> Context:
        return Context(fields=self.fields, values=MappingProxyType({**self.values, key: val}))

    def value(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)


BACKGROUND = Context()

_current: ContextVar[Context] = ContextVar("servicekit_context", default=BACKGROUND)


def bind_fields(ctx: Context | None, *fields: Field) -> Context:
    """Return a context that carries `ctx`'s fields followed by `fields`.

    With no fields the input context is returned as-is.
    """

    if ctx is None:
        ctx = BACKGROUND
    if not fields:
        return ctx
    return Context(fields=ctx.fields + fields, values=ctx.values)


def fields_of(ctx: Context | None) -> tuple[Field, ...]:
    if ctx is None:
        return ()
    return ctx.fields


def current_context() -> Context:
    return _current.get()


@contextmanager
def use_context(ctx: Context) -> Iterator[Context]:
    token = _current.set(ctx)
    try:
        yield ctx
    finally:
        _current.reset(token)
