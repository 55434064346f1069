"""
测试 hotelops.security.auth 模块 - 令牌与密码哈希
"""
import pytest
from fastapi import HTTPException

from hotelops.models.ontology import UserRole
from hotelops.security.auth import (
    create_access_token,
    decode_token,
    get_password_hash,
    verify_password,
)


class TestPasswordHash:

    def test_hash_and_verify(self):
        hashed = get_password_hash("s3cret")
        assert hashed != "s3cret"
        assert verify_password("s3cret", hashed)
        assert not verify_password("wrong", hashed)


class TestTokens:

    def test_round_trip_claims(self):
        payload = decode_token(create_access_token(42, UserRole.STAFF))
        assert payload["sub"] == "42"
        assert payload["role"] == "staff"

    def test_expired_token_rejected(self):
        token = create_access_token(42, UserRole.GUEST, expires_minutes=-1)
        with pytest.raises(HTTPException) as exc_info:
            decode_token(token)
        assert exc_info.value.status_code == 401

    def test_garbage_token_rejected(self):
        with pytest.raises(HTTPException):
            decode_token("not.a.jwt")
