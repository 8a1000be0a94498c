from __future__ import annotations

from dataclasses import asdict, dataclass
from threading import Lock
from typing import Any

from servicekit.observability.commands import Outcome


@dataclass
class _LatencyAgg:
    count: int = 0
    sum_ms: float = 0.0
    max_ms: float = 0.0

    def observe(self, elapsed_ms: float) -> None:
        self.count += 1
        self.sum_ms += float(elapsed_ms)
        if elapsed_ms > self.max_ms:
            self.max_ms = float(elapsed_ms)


class InMemoryMetrics:
    """Thread-safe, process-local metrics (resets on restart)."""

    def __init__(self) -> None:
        self._lock = Lock()
        self.http_requests_total: int = 0
        self.redis_commands_total: int = 0
        self.sql_queries_total: int = 0
        self.errors_total: int = 0
        self.slow_total: int = 0
        self.http_request_ms = _LatencyAgg()
        self.redis_command_ms = _LatencyAgg()
        self.sql_query_ms = _LatencyAgg()

    def observe_http_request(self, elapsed_ms: float) -> None:
        with self._lock:
            self.http_requests_total += 1
            self.http_request_ms.observe(elapsed_ms)

    def observe_call(self, kind: str, elapsed_ms: float, outcome: Outcome) -> None:
        """Record one instrumented client call; `kind` is "redis" or "sql"."""

        with self._lock:
            if kind == "sql":
                self.sql_queries_total += 1
                self.sql_query_ms.observe(elapsed_ms)
            else:
                self.redis_commands_total += 1
                self.redis_command_ms.observe(elapsed_ms)
            if outcome is Outcome.ERROR:
                self.errors_total += 1
            elif outcome is Outcome.SLOW:
                self.slow_total += 1

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": {
                    "http_requests_total": self.http_requests_total,
                    "redis_commands_total": self.redis_commands_total,
                    "sql_queries_total": self.sql_queries_total,
                    "errors_total": self.errors_total,
                    "slow_total": self.slow_total,
                },
                "latency_ms": {
                    "http_request_ms": asdict(self.http_request_ms),
                    "redis_command_ms": asdict(self.redis_command_ms),
                    "sql_query_ms": asdict(self.sql_query_ms),
                },
            }

    def reset(self) -> None:
        with self._lock:
            self.http_requests_total = 0
            self.redis_commands_total = 0
            self.sql_queries_total = 0
            self.errors_total = 0
            self.slow_total = 0
            self.http_request_ms = _LatencyAgg()
            self.redis_command_ms = _LatencyAgg()
            self.sql_query_ms = _LatencyAgg()


_METRICS: InMemoryMetrics | None = None


def get_metrics() -> InMemoryMetrics:
    global _METRICS
    if _METRICS is None:
        _METRICS = InMemoryMetrics()
    return _METRICS


def reset_metrics() -> None:
    """Reset metrics counters/aggregates (used by tests)."""

    get_metrics().reset()
