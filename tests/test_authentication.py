from datetime import timedelta

import jwt
import pytest
from conftest import make_user
from fastapi import HTTPException

from core.authentication import (
    decrypt,
    encrypt,
    generate_jwt_token,
    get_current_user,
    get_token_from_header,
)
from core.config import settings
from models.calendar import UserRole


# Purpose: a generated token decodes back into the same user profile.
def test_token_round_trip():
    user = make_user(
        UserRole.TEACHER, id="t9", is_admin=True, permissions=frozenset({"can_manage_events"})
    )

    profile = get_current_user(generate_jwt_token(user))

    assert profile == user


def test_expired_token_rejected():
    token = generate_jwt_token(make_user(), expires_delta=timedelta(seconds=-10))

    with pytest.raises(HTTPException) as exc_info:
        get_current_user(token)
    assert exc_info.value.detail == "Token has expired"


def test_wrong_audience_rejected():
    token = jwt.encode(
        {"sub": "u1", "aud": "other", "iss": "x", "iat": 0, "exp": 9999999999, "role": "student"},
        settings.JWT_SECRET_KEY,
        algorithm="HS256",
    )

    with pytest.raises(HTTPException) as exc_info:
        get_current_user(token)
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_header_parsing():
    assert await get_token_from_header("Bearer abc") == "abc"

    for header in (None, "abc", "Basic abc"):
        with pytest.raises(HTTPException):
            await get_token_from_header(header)


def test_encryption():
    secret = encrypt("refresh-token")

    assert secret != "refresh-token"
    assert decrypt(secret) == "refresh-token"
    assert decrypt("not-a-fernet-token") == ""
