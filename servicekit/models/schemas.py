from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class Result(BaseModel):
    """Response envelope: `code` 0 means success."""

    code: int = 0
    message: str = "ok"
    data: Any = None


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str


class Claims(BaseModel):
    user_id: int
    type: Literal["access", "refresh"]
    exp: int
    iat: int
    nbf: int


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)
