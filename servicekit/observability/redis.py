"""Logging hooks around redis call sites.

A hook takes the next handler and returns a handler of the same shape, so hooks
stack like decorators:

    hooks = RedisLogger(slow_threshold=0.05)
    process = hooks.process_hook(other_hook(send_command))
    process(("GET", "user:1"))

`InstrumentedRedis` wires the hooks into redis-py: commands go through
`process_hook`, pipelines through `process_pipeline_hook` and socket dials (via
`InstrumentedConnection`) through `dial_hook`. Hooks only observe: results are
returned and exceptions re-raised untouched.
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from time import perf_counter
from typing import TYPE_CHECKING, Any, Callable

import redis
from redis.client import Pipeline

from servicekit.observability.commands import (
    DEFAULT_MAX_LENGTH,
    DEFAULT_SENSITIVE_COMMANDS,
    Outcome,
    classify,
    normalize_sensitive,
    render_batch,
    render_command,
)
from servicekit.observability.logging import Logger, get_logger
from servicekit.observability.metrics import get_metrics

if TYPE_CHECKING:
    from servicekit.config import Settings


DialHook = Callable[[str], Any]
ProcessHook = Callable[[Sequence[Any]], Any]
PipelineHook = Callable[[Sequence[Sequence[Any]]], Any]

_SUFFIX = {Outcome.ERROR: "error", Outcome.SLOW: "slow", Outcome.SUCCESS: "success"}


class RedisLogger:
    def __init__(
        self,
        logger: Logger | None = None,
        *,
        slow_threshold: float = 0.1,
        max_length: int = DEFAULT_MAX_LENGTH,
        sensitive_commands: Collection[str] = DEFAULT_SENSITIVE_COMMANDS,
        benign_errors: tuple[type[BaseException], ...] = (),
    ) -> None:
        if max_length <= 0:
            raise ValueError("max_length must be positive")
        self._logger = logger
        self.slow_threshold = slow_threshold
        self.max_length = max_length
        self.sensitive_commands = normalize_sensitive(sensitive_commands)
        self.benign_errors = tuple(benign_errors)

    @property
    def logger(self) -> Logger:
        # Resolved per call so a re-initialized default logger is picked up.
        return self._logger or get_logger()

    def dial_hook(self, next_hook: DialHook) -> DialHook:
        def hook(address: str) -> Any:
            start = perf_counter()
            try:
                conn = next_hook(address)
            except Exception as exc:
                self._log_dial(address, perf_counter() - start, exc)
                raise
            self._log_dial(address, perf_counter() - start, None)
            return conn

        return hook

    def process_hook(self, next_hook: ProcessHook) -> ProcessHook:
        def hook(args: Sequence[Any]) -> Any:
            start = perf_counter()
            try:
                result = next_hook(args)
            except Exception as exc:
                self._log_command("redis", lambda: self.describe(args), perf_counter() - start, exc)
                raise
            self._log_command("redis", lambda: self.describe(args), perf_counter() - start, None)
            return result

        return hook

    def process_pipeline_hook(self, next_hook: PipelineHook) -> PipelineHook:
        def hook(commands: Sequence[Sequence[Any]]) -> Any:
            start = perf_counter()
            try:
                results = next_hook(commands)
            except Exception as exc:
                self._log_command("redis pipeline", lambda: self.describe_batch(commands), perf_counter() - start, exc)
                raise
            elapsed = perf_counter() - start
            # With raise_on_error=False redis-py hands failures back inside the results.
            failed = None
            if isinstance(results, list):
                failed = next((r for r in results if isinstance(r, Exception)), None)
            self._log_command("redis pipeline", lambda: self.describe_batch(commands), elapsed, failed)
            return results

        return hook

    def describe(self, args: Sequence[Any]) -> str:
        return render_command(args, max_length=self.max_length, sensitive=self.sensitive_commands)

    def describe_batch(self, commands: Sequence[Sequence[Any]]) -> str:
        return render_batch(commands, max_length=self.max_length, sensitive=self.sensitive_commands)

    def _log_dial(self, address: str, elapsed: float, exc: Exception | None) -> None:
        logger = self.logger
        if exc is not None:
            logger.error().field("addr", address).dur("duration_ms", elapsed).err(exc).msg("redis connected failed")
        else:
            logger.info().field("addr", address).dur("duration_ms", elapsed).msg("redis connected")

    def _log_command(
        self,
        prefix: str,
        descriptor: Callable[[], str],
        elapsed: float,
        exc: BaseException | None,
    ) -> None:
        outcome = classify(exc, elapsed, self.slow_threshold, self.benign_errors)
        get_metrics().observe_call("redis", elapsed * 1000.0, outcome)

        event = self.logger.log(outcome.level)
        if not event.enabled:
            return
        event.field("cmd", descriptor()).dur("duration_ms", elapsed)
        if outcome is Outcome.ERROR:
            event.err(exc)
        event.msg(f"{prefix} {_SUFFIX[outcome]}")


def redis_logger_from_settings(settings: Settings, logger: Logger | None = None) -> RedisLogger:
    return RedisLogger(
        logger,
        slow_threshold=settings.redis_slow_ms / 1000.0,
        max_length=settings.command_max_length,
        sensitive_commands=settings.sensitive_commands,
    )


class InstrumentedConnection(redis.Connection):
    """Connection whose socket dial is reported through `RedisLogger.dial_hook`."""

    def __init__(self, *args: Any, command_logger: RedisLogger | None = None, **kwargs: Any) -> None:
        self.command_logger = command_logger or RedisLogger()
        super().__init__(*args, **kwargs)

    def _connect(self) -> Any:
        base_connect = super()._connect
        dial = self.command_logger.dial_hook(lambda _address: base_connect())
        return dial(f"{self.host}:{self.port}")


def _stack_args(entry: Any) -> Sequence[Any]:
    args = getattr(entry, "args", None)
    if args is None:
        args = entry[0]
    return args


class InstrumentedPipeline(Pipeline):
    def __init__(self, *args: Any, command_logger: RedisLogger | None = None, **kwargs: Any) -> None:
        self.command_logger = command_logger or RedisLogger()
        super().__init__(*args, **kwargs)

    def execute(self, raise_on_error: bool = True) -> list[Any]:
        commands = [_stack_args(entry) for entry in self.command_stack]
        base_execute = super().execute
        run = self.command_logger.process_pipeline_hook(lambda _commands: base_execute(raise_on_error))
        return run(commands)


class InstrumentedRedis(redis.Redis):
    def __init__(self, *args: Any, command_logger: RedisLogger | None = None, **kwargs: Any) -> None:
        self.command_logger = command_logger or RedisLogger()
        super().__init__(*args, **kwargs)

    def execute_command(self, *args: Any, **options: Any) -> Any:
        base_execute = super().execute_command
        process = self.command_logger.process_hook(lambda cmd: base_execute(*cmd, **options))
        return process(args)

    def pipeline(self, transaction: bool = True, shard_hint: Any = None) -> InstrumentedPipeline:
        return InstrumentedPipeline(
            self.connection_pool,
            self.response_callbacks,
            transaction,
            shard_hint,
            command_logger=self.command_logger,
        )


def redis_from_url(url: str, command_logger: RedisLogger | None = None, **kwargs: Any) -> InstrumentedRedis:
    command_logger = command_logger or RedisLogger()
    pool = redis.ConnectionPool.from_url(
        url,
        connection_class=InstrumentedConnection,
        command_logger=command_logger,
        **kwargs,
    )
    return InstrumentedRedis(connection_pool=pool, command_logger=command_logger)
