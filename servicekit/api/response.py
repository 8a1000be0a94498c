from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from servicekit.errors import AppError
from servicekit.models.schemas import Result
from servicekit.observability.logging import get_logger

CODE_UNKNOWN = -1


def _render(result: Result, status_code: int) -> JSONResponse:
    body = result.model_dump(mode="json")
    if result.data is None:
        body.pop("data")
    return JSONResponse(body, status_code=status_code)


def ok(data: Any = None) -> JSONResponse:
    return _render(Result(data=data), 200)


def fail(err: Exception, data: Any = None) -> JSONResponse:
    """Envelope for an error: `AppError` keeps its code, anything else is a 500."""

    if isinstance(err, AppError):
        return _render(Result(code=err.code, message=err.message, data=data), err.http_status or 200)
    return _render(Result(code=CODE_UNKNOWN, message=str(err), data=data), 500)


def respond(err: Exception | None = None, data: Any = None) -> JSONResponse:
    if err is not None:
        return fail(err)
    return ok(data)


async def _handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    event = get_logger().error() if exc.http_status >= 500 else get_logger().warning()
    event.field("code", exc.code).field("path", request.url.path).err(exc).msg("request failed")
    return fail(exc)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _handle_app_error)
