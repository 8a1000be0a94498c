from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from servicekit.api.response import ok
from servicekit.models.schemas import RefreshRequest
from servicekit.services.token_service import TokenManager, get_token_manager

router = APIRouter(tags=["auth"])


@router.post("/auth/refresh")
def refresh(payload: RefreshRequest, manager: TokenManager = Depends(get_token_manager)) -> JSONResponse:
    return ok(manager.refresh_token(payload.refresh_token))
