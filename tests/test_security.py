"""Tests for bearer token handling."""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import jwt
import pytest
from fastapi import HTTPException

from shopledger.auth import get_current_user_id
from shopledger.config import settings
from shopledger.security import create_access_token, decode_access_token


def test_create_and_decode_access_token():
    user_id = uuid4()
    token = create_access_token(user_id)

    payload = decode_access_token(token)

    assert payload["sub"] == str(user_id)
    assert "exp" in payload


def test_create_access_token_with_custom_expiry():
    token = create_access_token(uuid4(), expires_delta=timedelta(minutes=10))

    payload = decode_access_token(token)
    expected_exp = datetime.now(UTC) + timedelta(minutes=10)
    assert abs(payload["exp"] - expected_exp.timestamp()) < 5


def test_decode_expired_token():
    token = create_access_token(uuid4(), expires_delta=timedelta(seconds=-1))
    assert decode_access_token(token) is None


def test_decode_invalid_token():
    assert decode_access_token("invalid.token.string") is None
    assert decode_access_token("") is None


@pytest.mark.asyncio
async def test_current_user_id_from_token():
    user_id = uuid4()
    assert await get_current_user_id(create_access_token(user_id)) == user_id


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "claims",
    [{}, {"sub": "not-a-uuid"}],
)
async def test_current_user_id_rejects_bad_subject(claims):
    token = jwt.encode(
        {**claims, "exp": datetime.now(UTC) + timedelta(minutes=5)},
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )

    with pytest.raises(HTTPException) as exc_info:
        await get_current_user_id(token)

    assert exc_info.value.status_code == 401
