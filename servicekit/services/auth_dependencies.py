from __future__ import annotations

from fastapi import Depends, Header

from servicekit.errors import AppError
from servicekit.models.schemas import Claims
from servicekit.services.token_service import ACCESS_TOKEN, TokenError, TokenManager, get_token_manager

CODE_UNAUTHENTICATED = 40100


def get_current_claims(
    authorization: str | None = Header(default=None),
    manager: TokenManager = Depends(get_token_manager),
) -> Claims:
    if not authorization:
        raise AppError(CODE_UNAUTHENTICATED, "Not authenticated", http_status=401)

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AppError(CODE_UNAUTHENTICATED, "Not authenticated", http_status=401)

    claims = manager.parse_token(token.strip())
    if claims.type != ACCESS_TOKEN:
        raise TokenError("invalid token type: expected access token")
    return claims
