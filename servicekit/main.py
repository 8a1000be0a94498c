from fastapi import FastAPI, Request

from servicekit.api.auth import router as auth_router
from servicekit.api.metrics import router as metrics_router
from servicekit.api.response import install_error_handlers
from servicekit.config import Settings, get_settings
from servicekit.observability.logging import configure_logging
from servicekit.observability.middleware import RequestContextMiddleware, get_request_id


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(title="servicekit", version="0.1.0")
    app.add_middleware(
        RequestContextMiddleware,
        header_name=settings.request_id_header,
        skip_paths=settings.access_log_skip_paths,
    )
    install_error_handlers(app)
    app.include_router(auth_router)
    app.include_router(metrics_router)

    @app.get("/health")
    async def health(request: Request) -> dict[str, str]:
        return {"status": "ok", "request_id": get_request_id(request)}

    return app


app = create_app()
