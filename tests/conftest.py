from __future__ import annotations

import io
import json
from collections.abc import AsyncIterator, Iterator
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from servicekit.config import get_settings
from servicekit.main import create_app
from servicekit.observability.logging import new_logger, set_logger
from servicekit.observability.metrics import reset_metrics
from servicekit.observability.sinks import stream_sink
from servicekit.services.token_service import get_token_manager


class LogCapture:
    """JSON records written through the default logger during a test."""

    def __init__(self) -> None:
        self.stream = io.StringIO()
        self.sink = stream_sink(self.stream)

    @property
    def records(self) -> list[dict[str, Any]]:
        return [json.loads(line) for line in self.stream.getvalue().splitlines() if line.strip()]

    def with_message(self, message: str) -> list[dict[str, Any]]:
        return [r for r in self.records if r.get("message") == message]

    def install(self) -> None:
        set_logger(new_logger(level="DEBUG", sink=self.sink))


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setenv("JWT_SECRET", "test-secret-key")
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    get_settings.cache_clear()
    get_token_manager.cache_clear()
    reset_metrics()

    yield

    get_settings.cache_clear()
    get_token_manager.cache_clear()


@pytest.fixture
def captured_logs() -> Iterator[LogCapture]:
    capture = LogCapture()
    previous = set_logger(new_logger(level="DEBUG", sink=capture.sink))
    yield capture
    set_logger(previous)


@pytest.fixture
async def api_client(captured_logs: LogCapture) -> AsyncIterator[AsyncClient]:
    app = create_app()
    # create_app installs its own default logger; capture on top of it.
    captured_logs.install()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
