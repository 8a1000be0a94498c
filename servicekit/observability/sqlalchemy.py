from __future__ import annotations

import copy
import logging
from time import perf_counter
from typing import TYPE_CHECKING, Any, Callable

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoResultFound

from servicekit.observability.commands import DEFAULT_MAX_LENGTH, Outcome, classify, truncate
from servicekit.observability.context import Context
from servicekit.observability.logging import Logger, get_logger
from servicekit.observability.metrics import get_metrics

if TYPE_CHECKING:
    from servicekit.config import Settings


_START_KEY = "servicekit_query_start"

_MODES: dict[str, int] = {
    "silent": logging.CRITICAL + 10,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
}

StatementProvider = Callable[[], tuple[str, int]]


class QueryTracer:
    """Logs every SQL statement run through an engine.

    `trace()` is the hook proper and can be driven by hand; `install()` connects it to
    an engine's cursor events. Statements that fail with `NoResultFound` are not
    errors; statements slower than `slow_threshold` seconds log at warning. `log_level`
    only gates success records, except for "silent", which drops everything.
    """

    def __init__(
        self,
        logger: Logger | None = None,
        *,
        slow_threshold: float = 1.0,
        log_level: str = "info",
        max_length: int = DEFAULT_MAX_LENGTH,
        benign_errors: tuple[type[BaseException], ...] = (NoResultFound,),
    ) -> None:
        if log_level not in _MODES:
            raise ValueError(f"unknown log level {log_level!r}")
        if max_length <= 0:
            raise ValueError("max_length must be positive")
        self._logger = logger
        self.slow_threshold = slow_threshold
        self.log_level = log_level
        self.max_length = max_length
        self.benign_errors = benign_errors

    @property
    def logger(self) -> Logger:
        return self._logger or get_logger()

    def log_mode(self, level: str) -> QueryTracer:
        if level not in _MODES:
            raise ValueError(f"unknown log level {level!r}")
        tracer = copy.copy(self)
        tracer.log_level = level
        return tracer

    def trace(
        self,
        ctx: Context | None,
        begin: float,
        provider: StatementProvider,
        error: BaseException | None = None,
    ) -> None:
        """Report one statement. `begin` is a `time.perf_counter()` reading."""

        if self.log_level == "silent":
            return

        elapsed = perf_counter() - begin
        outcome = classify(error, elapsed, self.slow_threshold, self.benign_errors)
        get_metrics().observe_call("sql", elapsed * 1000.0, outcome)
        if outcome is Outcome.SUCCESS and _MODES[self.log_level] > logging.INFO:
            return

        statement, rows = provider()
        record = self.logger.log(outcome.level, ctx)
        if not record.enabled:
            return
        record.field("sql", truncate(statement, self.max_length)).field("rows", rows).dur("duration_ms", elapsed)

        if outcome is Outcome.ERROR:
            record.err(error).msg(f"query error: {error}")
        elif outcome is Outcome.SLOW:
            record.msg("slow query")
        else:
            record.msg("query success")

    def install(self, engine: Engine) -> None:
        event.listen(engine, "before_cursor_execute", self._before_cursor_execute)
        event.listen(engine, "after_cursor_execute", self._after_cursor_execute)
        event.listen(engine, "handle_error", self._handle_error)

    def _before_cursor_execute(self, conn, cursor, statement, parameters, context, executemany) -> None:
        conn.info.setdefault(_START_KEY, []).append(perf_counter())

    def _after_cursor_execute(self, conn, cursor, statement, parameters, context, executemany) -> None:
        starts = conn.info.get(_START_KEY)
        if not starts:
            return
        begin = starts.pop()
        rows = cursor.rowcount
        self.trace(_log_context(context), begin, lambda: (statement, rows))

    def _handle_error(self, exception_context: Any) -> None:
        conn = exception_context.connection
        starts = conn.info.get(_START_KEY) if conn is not None else None
        if not starts:
            # Failed before the cursor ran (connect, compile); nothing was timed.
            return
        begin = starts.pop()
        statement = exception_context.statement or ""
        self.trace(
            _log_context(exception_context.execution_context),
            begin,
            lambda: (statement, -1),
            exception_context.original_exception,
        )


def _log_context(execution_context: Any) -> Context | None:
    if execution_context is None:
        return None
    ctx = execution_context.execution_options.get("log_context")
    return ctx if isinstance(ctx, Context) else None


def query_tracer_from_settings(settings: Settings, logger: Logger | None = None) -> QueryTracer:
    return QueryTracer(
        logger,
        slow_threshold=settings.sql_slow_ms / 1000.0,
        max_length=settings.command_max_length,
    )
