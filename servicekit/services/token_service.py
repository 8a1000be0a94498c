from __future__ import annotations

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any

import jwt
from pydantic import ValidationError

from servicekit.config import get_settings
from servicekit.errors import AppError
from servicekit.models.schemas import Claims, TokenPair

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"

CODE_INVALID_TOKEN = 40101

_DEFAULT_ACCESS_EXPIRE_SECONDS = 7200
_DEFAULT_REFRESH_EXPIRE_SECONDS = 7 * 86400


class TokenError(AppError):
    def __init__(self, message: str) -> None:
        super().__init__(CODE_INVALID_TOKEN, message, http_status=401)


class TokenManager:
    """Issues, verifies and refreshes HS256 access/refresh token pairs."""

    def __init__(
        self,
        secret: str,
        access_expire_seconds: int = _DEFAULT_ACCESS_EXPIRE_SECONDS,
        refresh_expire_seconds: int = _DEFAULT_REFRESH_EXPIRE_SECONDS,
    ) -> None:
        if not secret:
            raise ValueError("JWT secret cannot be empty")
        self.secret = secret
        self.access_expire_seconds = access_expire_seconds if access_expire_seconds > 0 else _DEFAULT_ACCESS_EXPIRE_SECONDS
        self.refresh_expire_seconds = (
            refresh_expire_seconds if refresh_expire_seconds > 0 else _DEFAULT_REFRESH_EXPIRE_SECONDS
        )

    def _generate(self, user_id: int, token_type: str, expire_seconds: int) -> str:
        now = datetime.now(timezone.utc)
        payload: dict[str, Any] = {
            "user_id": user_id,
            "type": token_type,
            "iat": int(now.timestamp()),
            "nbf": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=expire_seconds)).timestamp()),
        }
        return jwt.encode(payload, self.secret, algorithm="HS256")

    def generate_token(self, user_id: int) -> str:
        return self._generate(user_id, ACCESS_TOKEN, self.access_expire_seconds)

    def generate_token_pair(self, user_id: int) -> TokenPair:
        return TokenPair(
            access_token=self._generate(user_id, ACCESS_TOKEN, self.access_expire_seconds),
            refresh_token=self._generate(user_id, REFRESH_TOKEN, self.refresh_expire_seconds),
        )

    def parse_token(self, token: str) -> Claims:
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=["HS256"],
                options={"require": ["exp", "iat", "nbf"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenError("token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenError("invalid token") from exc

        try:
            return Claims.model_validate(payload)
        except ValidationError as exc:
            raise TokenError("invalid token") from exc

    def refresh_token(self, refresh_token: str) -> TokenPair:
        claims = self.parse_token(refresh_token)
        if claims.type != REFRESH_TOKEN:
            raise TokenError("invalid token type: expected refresh token")
        return self.generate_token_pair(claims.user_id)


@lru_cache(maxsize=1)
def get_token_manager() -> TokenManager:
    settings = get_settings()
    return TokenManager(
        settings.jwt_secret,
        access_expire_seconds=settings.jwt_access_expire_seconds,
        refresh_expire_seconds=settings.jwt_refresh_expire_seconds,
    )
