# tests/v1/test_dependencies.py
"""Tests for API dependencies and bearer token handling."""

from datetime import UTC, datetime, timedelta

import pytest
from fastapi import HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from jose import JWTError, jwt

from parley.api.v1.dependencies import get_current_user
from parley.core.security import create_access_token, decode_access_token
from parley.core.settings import settings


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestAccessTokens:
    """Token helpers round-trip the user id as the subject."""

    def test_round_trip(self):
        payload = decode_access_token(create_access_token(42))
        assert payload["sub"] == "42"
        assert payload["exp"] > datetime.now(UTC).timestamp()

    def test_extra_claims(self):
        payload = decode_access_token(create_access_token(7, {"scope": "messages"}))
        assert payload["scope"] == "messages"

    def test_wrong_secret_rejected(self):
        token = jwt.encode({"sub": "1"}, "wrong-secret", algorithm=settings.jwt_algorithm)
        with pytest.raises(JWTError):
            decode_access_token(token)


class TestGetCurrentUser:
    """Test the get_current_user dependency directly."""

    def test_resolves_user(self, db_session, alice):
        user = get_current_user(_credentials(create_access_token(alice.id)), db_session)
        assert user.id == alice.id

    def test_unknown_user(self, db_session):
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(_credentials(create_access_token(99999)), db_session)
        assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED
        assert exc_info.value.detail == "User not found"

    def test_missing_subject(self, db_session):
        token = jwt.encode(
            {"exp": datetime.now(UTC) + timedelta(minutes=5)},
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
        )
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(_credentials(token), db_session)
        assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED

    def test_non_numeric_subject(self, db_session):
        token = jwt.encode(
            {"sub": "alice", "exp": datetime.now(UTC) + timedelta(minutes=5)},
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
        )
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(_credentials(token), db_session)
        assert exc_info.value.detail == "Could not validate credentials"

    def test_expired_token(self, db_session, alice):
        token = jwt.encode(
            {"sub": str(alice.id), "exp": datetime.now(UTC) - timedelta(minutes=1)},
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
        )
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(_credentials(token), db_session)
        assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED

    def test_malformed_token_over_http(self, client):
        response = client.get(
            "/api/v1/messages/unread-count",
            headers={"Authorization": "Bearer not.a.valid.jwt"},
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
