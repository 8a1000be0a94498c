from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from servicekit.api.response import ok
from servicekit.config import get_settings
from servicekit.errors import AppError
from servicekit.models.schemas import Claims
from servicekit.observability.metrics import get_metrics
from servicekit.services.auth_dependencies import get_current_claims

router = APIRouter(prefix="/api", tags=["metrics"])


@router.get("/metrics")
async def metrics(claims: Claims = Depends(get_current_claims)) -> JSONResponse:
    _ = claims  # auth gate
    settings = get_settings()
    if not settings.enable_metrics_endpoint:
        raise AppError(40400, "Not found", http_status=404)
    return ok(get_metrics().snapshot())
