"""Rendering and classification shared by the client instrumentation hooks."""

from __future__ import annotations

import enum
import logging
from collections.abc import Collection, Iterable, Sequence
from typing import Any

TRUNCATED_MARKER = " ...[truncated]"
MASK = "****"
BATCH_SEPARATOR = "; "
BATCH_LIMIT = 5
DEFAULT_MAX_LENGTH = 1024
DEFAULT_SENSITIVE_COMMANDS = frozenset({"auth", "hello"})


class Outcome(enum.Enum):
    ERROR = logging.ERROR
    SLOW = logging.WARNING
    SUCCESS = logging.INFO

    @property
    def level(self) -> int:
        return self.value


def classify(
    error: BaseException | None,
    elapsed: float,
    threshold: float,
    benign: tuple[type[BaseException], ...] = (),
) -> Outcome:
    """Error beats slow beats success. Benign errors still count as slow when late."""

    if error is not None and not (benign and isinstance(error, benign)):
        return Outcome.ERROR
    if threshold > 0 and elapsed > threshold:
        return Outcome.SLOW
    return Outcome.SUCCESS


def truncate(text: str, max_length: int) -> str:
    if len(text) > max_length:
        return text[:max_length] + TRUNCATED_MARKER
    return text


def _token(arg: Any) -> str:
    if isinstance(arg, (bytes, bytearray, memoryview)):
        return bytes(arg).decode("utf-8", errors="replace")
    return str(arg)


def normalize_sensitive(names: Iterable[str]) -> frozenset[str]:
    return frozenset(name.strip().lower() for name in names if name and name.strip())


def render_command(
    args: Sequence[Any],
    *,
    max_length: int = DEFAULT_MAX_LENGTH,
    sensitive: Collection[str] = DEFAULT_SENSITIVE_COMMANDS,
) -> str:
    """Render `("SET", "k", "v")` as `"SET k v"`.

    For sensitive commands only the first token survives, followed by the mask.
    """

    tokens = [_token(arg) for arg in args]
    if not tokens:
        return ""
    if len(tokens) > 1 and tokens[0].lower() in sensitive:
        return truncate(f"{tokens[0]} {MASK}", max_length)
    return truncate(" ".join(tokens), max_length)


def render_batch(
    commands: Sequence[Sequence[Any]],
    *,
    max_length: int = DEFAULT_MAX_LENGTH,
    sensitive: Collection[str] = DEFAULT_SENSITIVE_COMMANDS,
    limit: int = BATCH_LIMIT,
) -> str:
    parts: list[str] = []
    for i, args in enumerate(commands):
        if i >= limit:
            parts.append(f"... ({len(commands) - limit} more)")
            break
        parts.append(render_command(args, max_length=max_length, sensitive=sensitive))
    return truncate(BATCH_SEPARATOR.join(parts), max_length)
