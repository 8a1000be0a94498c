"""Context-aware structured logging.

`Logger` is an immutable value around a `Sink`, a minimum level and an optional
caller skip. Calling `logger.info(ctx)` returns an `Event` already stamped with
`timestamp`, `level`, `caller` (when enabled) and every field bound on the context;
the caller adds its own fields and finishes with `.msg(...)`:

    log = get_logger()
    log.info(ctx).field("status", 200).msg("request done")

Events below the logger's level come back disabled and attach nothing.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, replace
from types import FrameType
from typing import TYPE_CHECKING, Any

import structlog

from servicekit.observability.context import Context, current_context
from servicekit.observability.fields import Field
from servicekit.observability.sinks import Sink, file_sink, stream_sink

if TYPE_CHECKING:
    from servicekit.config import Settings


_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_stamp_time = structlog.processors.TimeStamper(fmt="iso", utc=True)


def parse_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    return _LEVELS.get(level.strip().lower(), logging.INFO)


def _method_for(level: int) -> str:
    if level >= logging.ERROR:
        return "error"
    if level >= logging.WARNING:
        return "warning"
    if level >= logging.INFO:
        return "info"
    return "debug"


def _caller_frame(depth: int) -> FrameType | None:
    # depth 0 is the function calling _caller_frame.
    try:
        return sys._getframe(depth + 1)
    except ValueError:
        return None


def _short_location(path: str, lineno: int) -> str:
    parts = path.replace(os.sep, "/").split("/")
    if len(parts) > 2:
        path = "/".join(parts[-2:])
    return f"{path}:{lineno}"


def _short_caller(frame: FrameType) -> str:
    return _short_location(frame.f_code.co_filename, frame.f_lineno)


class Event:
    """One in-flight record. Every method but `msg`/`send` returns the event itself."""

    __slots__ = ("_sink", "_method", "_fields", "_done")

    def __init__(self, sink: Sink | None, method: str = "info", fields: dict[str, Any] | None = None) -> None:
        self._sink = sink
        self._method = method
        self._fields: dict[str, Any] = fields if fields is not None else {}
        self._done = sink is None

    @property
    def enabled(self) -> bool:
        return self._sink is not None

    def field(self, key: str, val: Any) -> Event:
        if self._sink is not None:
            self._fields[key] = val
        return self

    def fields(self, values: Mapping[str, Any] | None) -> Event:
        if self._sink is not None and values:
            self._fields.update(values)
        return self

    def apply(self, *fields: Field) -> Event:
        if self._sink is not None:
            for f in fields:
                f(self)
        return self

    def dur(self, key: str, seconds: float) -> Event:
        return self.field(key, round(seconds * 1000.0, 3))

    def err(self, exc: BaseException | None) -> Event:
        if exc is None:
            return self
        return self.field("error", str(exc) or type(exc).__name__)

    def caller(self, skip: int = 0) -> Event:
        if self._sink is None:
            return self
        frame = _caller_frame(1 + skip)
        if frame is not None:
            self._fields["caller"] = _short_caller(frame)
        return self

    def msg(self, message: str = "") -> None:
        if self._done:
            return
        self._done = True
        self._sink.write(self._method, message, self._fields)

    def send(self) -> None:
        self.msg("")


_DISABLED = Event(None)


@dataclass(frozen=True)
class Logger:
    sink: Sink
    level: int = logging.INFO
    # None disables the caller field; 0 reports the line calling logger.<level>().
    caller_skip: int | None = None

    def with_caller_skip(self, skip: int = 0) -> Logger:
        return replace(self, caller_skip=(self.caller_skip or 0) + skip)

    def with_level(self, level: int | str) -> Logger:
        return replace(self, level=parse_level(level))

    def with_sink(self, sink: Sink) -> Logger:
        return replace(self, sink=sink)

    def enabled_for(self, level: int | str) -> bool:
        return parse_level(level) >= self.level

    def debug(self, ctx: Context | None = None) -> Event:
        return self._new_event(logging.DEBUG, ctx)

    def info(self, ctx: Context | None = None) -> Event:
        return self._new_event(logging.INFO, ctx)

    def warning(self, ctx: Context | None = None) -> Event:
        return self._new_event(logging.WARNING, ctx)

    def error(self, ctx: Context | None = None) -> Event:
        return self._new_event(logging.ERROR, ctx)

    def log(self, level: int | str, ctx: Context | None = None) -> Event:
        return self._new_event(parse_level(level), ctx)

    def _new_event(self, level: int, ctx: Context | None) -> Event:
        if level < self.level:
            return _DISABLED

        method = _method_for(level)
        record = structlog.processors.add_log_level(None, method, _stamp_time(None, method, {}))
        if self.caller_skip is not None:
            # 0: _new_event, 1: Logger.<level>, 2: the caller.
            frame = _caller_frame(2 + self.caller_skip)
            if frame is not None:
                record["caller"] = _short_caller(frame)

        event = Event(self.sink, method, record)
        if ctx is None:
            ctx = current_context()
        for f in ctx.fields:
            f(event)
        return event


def new_logger(
    *,
    level: int | str = logging.INFO,
    sink: Sink | None = None,
    output: Any = None,
    output_file: str | None = None,
    fmt: str = "json",
    caller: bool = False,
    max_megabytes: float = 100,
    backup_count: int = 5,
    max_age_days: int = 14,
    compress: bool = True,
) -> Logger:
    """Build a logger. `sink` wins over `output_file`, which wins over `output` (stdout)."""

    if sink is None:
        if output_file:
            sink = file_sink(
                output_file,
                max_megabytes=max_megabytes,
                backup_count=backup_count,
                max_age_days=max_age_days,
                compress=compress,
                fmt=fmt,
            )
        else:
            sink = stream_sink(output, fmt)
    return Logger(sink=sink, level=parse_level(level), caller_skip=0 if caller else None)


def logger_from_settings(settings: Settings) -> Logger:
    return new_logger(
        level=settings.log_level,
        output=sys.stderr if settings.log_output == "stderr" else sys.stdout,
        output_file=settings.log_file or None,
        fmt=settings.log_format,
        caller=settings.log_caller,
        max_megabytes=settings.log_file_max_mb,
        backup_count=settings.log_file_backups,
        max_age_days=settings.log_file_max_age_days,
        compress=settings.log_file_compress,
    )


# Process-wide default. Replaced only by reference swap (set_logger/init), so readers
# never see a half-built logger; code holding the previous value keeps using it.
_std: Logger = new_logger()


def get_logger() -> Logger:
    return _std


def set_logger(logger: Logger) -> Logger:
    """Install `logger` as the default and return the one it replaces."""

    global _std
    previous = _std
    _std = logger
    return previous


def init(**options: Any) -> Logger:
    logger = new_logger(**options)
    set_logger(logger)
    return logger


def debug(message: str, ctx: Context | None = None) -> None:
    _std.with_caller_skip(1).debug(ctx).msg(message)


def info(message: str, ctx: Context | None = None) -> None:
    _std.with_caller_skip(1).info(ctx).msg(message)


def warning(message: str, ctx: Context | None = None) -> None:
    _std.with_caller_skip(1).warning(ctx).msg(message)


def error(message: str, ctx: Context | None = None) -> None:
    _std.with_caller_skip(1).error(ctx).msg(message)


def exception(exc: BaseException, ctx: Context | None = None, message: str = "error") -> None:
    _std.with_caller_skip(1).error(ctx).err(exc).msg(message)


class SinkHandler(logging.Handler):
    """stdlib handler forwarding records (uvicorn, sqlalchemy, ...) to the default logger."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            logger = get_logger()
            event = logger.log(record.levelno)
            if not event.enabled:
                return
            if logger.caller_skip is not None:
                event.field("caller", _short_location(record.pathname, record.lineno))
            event.field("logger", record.name)
            if record.exc_info and record.exc_info[1] is not None:
                event.err(record.exc_info[1])
            event.msg(record.getMessage())
        except Exception:
            self.handleError(record)


def configure_logging(settings: Settings | None = None) -> Logger:
    """Install the default logger from settings and bridge stdlib logging into it.

    Safe to call again; the latest call wins.
    """

    if settings is None:
        from servicekit.config import get_settings

        settings = get_settings()

    logger = logger_from_settings(settings)
    set_logger(logger)

    handler = SinkHandler()
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(logger.level)

    # Keep uvicorn's own loggers consistent with our handler.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False
        uvicorn_logger.setLevel(logger.level)

    return logger
