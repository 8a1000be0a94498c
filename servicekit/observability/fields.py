from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from servicekit.observability.logging import Event


# A field is a deferred writer: it receives an in-flight event and sets one key on it.
Field = Callable[["Event"], None]


def value(key: str, val: Any) -> Field:
    def _apply(event: Event) -> None:
        event.field(key, val)

    return _apply


def string(key: str, val: str) -> Field:
    text = str(val)

    def _apply(event: Event) -> None:
        event.field(key, text)

    return _apply


def integer(key: str, val: int) -> Field:
    number = int(val)

    def _apply(event: Event) -> None:
        event.field(key, number)

    return _apply


def duration(key: str, seconds: float) -> Field:
    """Duration field, rendered in milliseconds like every other `*_ms` key."""

    def _apply(event: Event) -> None:
        event.dur(key, seconds)

    return _apply


def error(exc: BaseException | None) -> Field:
    def _apply(event: Event) -> None:
        if exc is not None:
            event.err(exc)

    return _apply


def caller(skip: int = 0) -> Field:
    """Caller field for binding on a context.

    Skip 0 reports the line that called `logger.<level>()`; each unit moves one frame up.
    """

    def _apply(event: Event) -> None:
        # 0: _apply, 1: Logger._new_event, 2: Logger.<level>, 3: the logging call.
        event.caller(skip + 3)

    return _apply
