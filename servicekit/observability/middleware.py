from __future__ import annotations

from collections.abc import Iterable
from time import perf_counter
from typing import Any, Callable

import ulid
from starlette.datastructures import Headers, MutableHeaders
from starlette.requests import Request

from servicekit.observability import fields
from servicekit.observability.context import bind_fields, current_context, use_context
from servicekit.observability.logging import Logger, get_logger
from servicekit.observability.metrics import get_metrics

HEADER_REQUEST_ID = "X-Request-ID"
REQUEST_ID_KEY = "request_id"


def generate_request_id() -> str:
    """Sortable unique id (ULID) for requests that arrive without one."""

    return str(ulid.new())


def get_request_id(request: Request) -> str:
    return getattr(request.state, REQUEST_ID_KEY, "")


class RequestContextMiddleware:
    """Binds a request id to the log context and writes one access log per request.

    The id comes from the request header when present, otherwise a new ULID. It is
    echoed on the response and stored on `request.state`. Paths in `skip_paths` pass
    straight through.
    """

    def __init__(
        self,
        app: Callable[..., Any],
        *,
        header_name: str = HEADER_REQUEST_ID,
        skip_paths: Iterable[str] = (),
        logger: Logger | None = None,
    ) -> None:
        self.app = app
        self.header_name = header_name
        self.skip_paths = {p for p in skip_paths if p}
        self._logger = logger
        # Avoid self-observing the observability endpoints.
        self._excluded_metric_paths = {"/api/metrics", "/metrics"}

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http" or scope.get("path") in self.skip_paths:
            await self.app(scope, receive, send)
            return

        start = perf_counter()
        path = scope.get("path")
        method = scope.get("method")
        request_id = Headers(scope=scope).get(self.header_name) or generate_request_id()
        scope.setdefault("state", {})[REQUEST_ID_KEY] = request_id

        ctx = bind_fields(current_context(), fields.string(REQUEST_ID_KEY, request_id))
        status_code: int = 500

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))
                headers = MutableHeaders(scope=message)
                headers[self.header_name] = request_id

            await send(message)

        with use_context(ctx):
            try:
                await self.app(scope, receive, send_wrapper)
            finally:
                elapsed = perf_counter() - start

                if path not in self._excluded_metric_paths:
                    get_metrics().observe_http_request(elapsed_ms=elapsed * 1000.0)

                query = scope.get("query_string") or b""
                uri = f"{path}?{query.decode('latin-1')}" if query else path
                (self._logger or get_logger()).info(ctx).field("status", status_code).field(
                    "latency_ms", int(elapsed * 1000)
                ).field("method", method).field("path", uri).msg("http access")
