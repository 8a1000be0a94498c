import io
import json
from time import perf_counter

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import NoResultFound, OperationalError
from sqlalchemy.pool import StaticPool

from servicekit.observability import fields
from servicekit.observability.context import bind_fields, use_context
from servicekit.observability.logging import new_logger
from servicekit.observability.sinks import stream_sink
from servicekit.observability.sqlalchemy import QueryTracer


def _tracer(**options):
    stream = io.StringIO()
    logger = new_logger(level="DEBUG", sink=stream_sink(stream))
    return QueryTracer(logger, **options), stream


def _records(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def _statement():
    return "SELECT * FROM users WHERE id = 1", 1


def test_trace_classifies_statements() -> None:
    tracer, stream = _tracer(slow_threshold=0.01)
    long_ago = perf_counter() - 0.05

    tracer.trace(None, long_ago, _statement, RuntimeError("boom"))
    tracer.trace(None, long_ago, _statement)
    tracer.trace(None, perf_counter(), _statement)

    error, slow, success = _records(stream)
    assert (error["level"], error["message"], error["error"]) == ("error", "query error: boom", "boom")
    assert (slow["level"], slow["message"]) == ("warning", "slow query")
    assert (success["level"], success["message"]) == ("info", "query success")
    assert success["sql"] == "SELECT * FROM users WHERE id = 1"
    assert success["rows"] == 1
    assert isinstance(success["duration_ms"], float)


def test_no_result_is_not_an_error() -> None:
    tracer, stream = _tracer(slow_threshold=0.01)

    tracer.trace(None, perf_counter(), _statement, NoResultFound())
    tracer.trace(None, perf_counter() - 0.05, _statement, NoResultFound())

    success, slow = _records(stream)
    assert success["level"] == "info"
    assert slow["level"] == "warning"


def test_statement_is_truncated() -> None:
    tracer, stream = _tracer(max_length=10)

    tracer.trace(None, perf_counter(), _statement)

    (record,) = _records(stream)
    assert record["sql"] == "SELECT * F ...[truncated]"


def test_log_mode_filters_and_copies() -> None:
    tracer, stream = _tracer(slow_threshold=0.01)
    provided = []

    def provider():
        provided.append(True)
        return _statement()

    errors_only = tracer.log_mode("error")
    errors_only.trace(None, perf_counter(), provider)
    errors_only.trace(None, perf_counter() - 0.05, provider)
    errors_only.trace(None, perf_counter(), provider, RuntimeError("boom"))

    assert tracer.log_level == "info"
    assert len(provided) == 2
    slow, error = _records(stream)
    assert (slow["level"], slow["message"]) == ("warning", "slow query")
    assert error["level"] == "error"


def test_warning_mode_drops_only_successes() -> None:
    tracer, stream = _tracer(slow_threshold=0.01, log_level="warning")

    tracer.trace(None, perf_counter(), _statement)
    tracer.trace(None, perf_counter() - 0.05, _statement)

    (record,) = _records(stream)
    assert record["message"] == "slow query"


def test_silent_mode_logs_nothing() -> None:
    tracer, stream = _tracer()
    provided = []

    tracer.log_mode("silent").trace(None, perf_counter(), lambda: provided.append(True) or _statement(), RuntimeError("x"))

    assert provided == []
    assert stream.getvalue() == ""


def test_unknown_mode_is_rejected() -> None:
    with pytest.raises(ValueError):
        QueryTracer(log_level="verbose")
    with pytest.raises(ValueError):
        QueryTracer().log_mode("trace")


def test_max_length_must_be_positive() -> None:
    with pytest.raises(ValueError):
        QueryTracer(max_length=0)


def test_explicit_context_fields_are_logged() -> None:
    tracer, stream = _tracer()
    ctx = bind_fields(None, fields.string("request_id", "r-1"))

    tracer.trace(ctx, perf_counter(), _statement)

    (record,) = _records(stream)
    assert record["request_id"] == "r-1"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    engine.dispose()


def test_installed_tracer_logs_engine_statements(engine) -> None:
    tracer, stream = _tracer()
    tracer.install(engine)
    ctx = bind_fields(None, fields.string("request_id", "r-2"))

    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
        conn.execution_options(log_context=ctx).execute(text("SELECT 2"))
        with use_context(bind_fields(None, fields.string("request_id", "r-3"))):
            conn.execute(text("SELECT 3"))

    by_sql = {r["sql"]: r for r in _records(stream)}
    assert by_sql["SELECT 1"]["message"] == "query success"
    assert "request_id" not in by_sql["SELECT 1"]
    assert by_sql["SELECT 2"]["request_id"] == "r-2"
    assert by_sql["SELECT 3"]["request_id"] == "r-3"


def test_installed_tracer_logs_failed_statements(engine) -> None:
    tracer, stream = _tracer()
    tracer.install(engine)

    with engine.connect() as conn:
        with pytest.raises(OperationalError):
            conn.execute(text("SELECT * FROM missing_table"))

    (record,) = [r for r in _records(stream) if "missing_table" in r["sql"]]
    assert record["level"] == "error"
    assert record["message"].startswith("query error:")
    assert "missing_table" in record["error"]
