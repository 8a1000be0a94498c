from __future__ import annotations

import glob
import gzip
import logging
import os
import shutil
import sys
import time
from logging.handlers import RotatingFileHandler
from threading import Lock
from typing import Any, Callable, TextIO

import structlog


def _processors(fmt: str) -> list[Any]:
    if fmt == "console":
        return [structlog.dev.ConsoleRenderer(colors=False, sort_keys=False)]
    return [
        structlog.processors.EventRenamer("message"),
        structlog.processors.JSONRenderer(ensure_ascii=False),
    ]


class Sink:
    """Renders finished events and hands them to a wrapped logger.

    `target` is anything structlog can wrap: `structlog.WriteLogger` for streams or a
    stdlib `logging.Logger` for handler-based outputs. Both serialize concurrent writes
    internally, so one sink can be shared by every logger in the process.

    A write that fails is dropped and counted; it never reaches the caller.
    """

    def __init__(self, target: Any, fmt: str = "json", closer: Callable[[], None] | None = None) -> None:
        self.fmt = fmt
        self._log = structlog.wrap_logger(
            target,
            processors=_processors(fmt),
            wrapper_class=structlog.BoundLogger,
            context_class=dict,
            cache_logger_on_first_use=False,
        ).bind()
        self._closer = closer
        self._lock = Lock()
        self._dropped = 0

    @property
    def dropped(self) -> int:
        return self._dropped

    def write(self, method: str, message: str, fields: dict[str, Any]) -> None:
        try:
            getattr(self._log.bind(**fields), method)(message)
        except Exception:
            with self._lock:
                self._dropped += 1

    def close(self) -> None:
        if self._closer is not None:
            self._closer()


def stream_sink(stream: TextIO | None = None, fmt: str = "json") -> Sink:
    return Sink(structlog.WriteLogger(stream or sys.stdout), fmt)


def _gzip_namer(name: str) -> str:
    return name + ".gz"


def _gzip_rotator(source: str, dest: str) -> None:
    with open(source, "rb") as src, gzip.open(dest, "wb") as dst:
        shutil.copyfileobj(src, dst)
    os.remove(source)


class _RotatingFileHandler(RotatingFileHandler):
    """Size-based rotation with optional gzip of backups and age-based pruning."""

    def __init__(
        self,
        filename: str,
        *,
        max_bytes: int,
        backup_count: int,
        max_age_days: int,
        compress: bool,
    ) -> None:
        super().__init__(filename, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8", delay=True)
        self.max_age_days = max_age_days
        if compress:
            self.namer = _gzip_namer
            self.rotator = _gzip_rotator

    def doRollover(self) -> None:
        super().doRollover()
        self._prune_expired()

    def _prune_expired(self) -> None:
        if self.max_age_days <= 0:
            return
        cutoff = time.time() - self.max_age_days * 86400
        for path in glob.glob(glob.escape(self.baseFilename) + ".*"):
            try:
                if os.path.getmtime(path) < cutoff:
                    os.remove(path)
            except OSError:
                # Another process rotated it away first.
                continue


def file_sink(
    path: str,
    *,
    max_megabytes: float = 100,
    backup_count: int = 5,
    max_age_days: int = 14,
    compress: bool = True,
    fmt: str = "json",
) -> Sink:
    """Sink writing one record per line to `path`, rotated by size."""

    path = os.path.abspath(path)
    os.makedirs(os.path.dirname(path), exist_ok=True)

    handler = _RotatingFileHandler(
        path,
        max_bytes=int(max_megabytes * 1024 * 1024),
        backup_count=backup_count,
        max_age_days=max_age_days,
        compress=compress,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    # Unregistered: records must not propagate to root, which is bridged back into a sink.
    target = logging.Logger("servicekit.sink", level=logging.DEBUG)
    target.addHandler(handler)
    return Sink(target, fmt, closer=handler.close)
