import time

import pytest

from servicekit.services.token_service import (
    ACCESS_TOKEN,
    REFRESH_TOKEN,
    TokenError,
    TokenManager,
    get_token_manager,
)

SECRET = "test-secret-key"


def test_empty_secret_is_rejected() -> None:
    with pytest.raises(ValueError):
        TokenManager("")


def test_non_positive_expiry_falls_back_to_defaults() -> None:
    manager = TokenManager(SECRET, access_expire_seconds=0, refresh_expire_seconds=-1)
    assert manager.access_expire_seconds == 7200
    assert manager.refresh_expire_seconds == 7 * 86400


def test_generate_and_parse_access_token() -> None:
    manager = TokenManager(SECRET)

    claims = manager.parse_token(manager.generate_token(1))

    assert claims.user_id == 1
    assert claims.type == ACCESS_TOKEN
    assert claims.exp > claims.iat


def test_token_pair_carries_both_types() -> None:
    manager = TokenManager(SECRET)

    pair = manager.generate_token_pair(42)

    assert manager.parse_token(pair.access_token).type == ACCESS_TOKEN
    refresh = manager.parse_token(pair.refresh_token)
    assert refresh.type == REFRESH_TOKEN
    assert refresh.user_id == 42


def test_refresh_issues_new_pair() -> None:
    manager = TokenManager(SECRET)
    pair = manager.generate_token_pair(7)

    renewed = manager.refresh_token(pair.refresh_token)

    assert manager.parse_token(renewed.access_token).user_id == 7


def test_refresh_rejects_access_tokens() -> None:
    manager = TokenManager(SECRET)

    with pytest.raises(TokenError) as info:
        manager.refresh_token(manager.generate_token(7))

    assert info.value.message == "invalid token type: expected refresh token"
    assert info.value.http_status == 401


def test_tampered_and_foreign_tokens_are_invalid() -> None:
    manager = TokenManager(SECRET)
    token = manager.generate_token(1)

    header, payload, _ = token.split(".")
    foreign_signature = TokenManager("other-secret").generate_token(1).split(".")[2]

    with pytest.raises(TokenError, match="invalid token"):
        manager.parse_token(f"{header}.{payload}.{foreign_signature}")
    with pytest.raises(TokenError, match="invalid token"):
        TokenManager("other-secret").parse_token(token)
    with pytest.raises(TokenError, match="invalid token"):
        manager.parse_token("not-a-token")


def test_expired_token() -> None:
    manager = TokenManager(SECRET, access_expire_seconds=1)
    token = manager.generate_token(1)

    time.sleep(2)

    with pytest.raises(TokenError, match="token expired"):
        manager.parse_token(token)


def test_manager_from_settings() -> None:
    manager = get_token_manager()
    assert manager.secret == SECRET
    assert get_token_manager() is manager
