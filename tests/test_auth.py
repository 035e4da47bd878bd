"""Test authentication module."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from fastapi.testclient import TestClient
from jose import jwt

from salla_alerts.core.auth import TokenData, create_access_token, get_current_user
from salla_alerts.core.main import app
from salla_alerts.core.settings import AppSettings


@pytest.fixture
def mock_settings() -> AppSettings:
    """Mock settings for testing."""
    return AppSettings(
        jwt_secret_key="test_secret_key",
        jwt_algorithm="HS256",
        jwt_access_token_expire_minutes=30,
    )


def bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


def test_create_access_token(mock_settings: AppSettings) -> None:
    """Test JWT token creation."""
    with patch("salla_alerts.core.auth.get_app_settings", return_value=mock_settings):
        token = create_access_token("owner@example.com")

    payload = jwt.decode(token, "test_secret_key", algorithms=["HS256"])
    assert payload["sub"] == "owner@example.com"


def test_token_names_the_connected_store(mock_settings: AppSettings) -> None:
    with patch("salla_alerts.core.auth.get_app_settings", return_value=mock_settings):
        token_data = get_current_user(bearer(create_access_token("owner@example.com", 1001)))

    assert token_data.merchant == 1001
    assert token_data.store_for(None) == 1001
    assert token_data.store_for(7) == 7


def test_token_validation(mock_settings: AppSettings) -> None:
    """Test JWT token validation."""
    with patch("salla_alerts.core.auth.get_app_settings", return_value=mock_settings):
        token = create_access_token("owner@example.com")
        token_data = get_current_user(bearer(token))

    assert isinstance(token_data, TokenData)
    assert token_data.email == "owner@example.com"
    assert token_data.exp is not None
    assert token_data.merchant is None


def test_invalid_token(mock_settings: AppSettings) -> None:
    """Test invalid token handling."""
    with patch("salla_alerts.core.auth.get_app_settings", return_value=mock_settings):
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(bearer("invalid_token"))
    assert exc_info.value.status_code == 401


def test_token_signed_with_another_key(mock_settings: AppSettings) -> None:
    token = jwt.encode(
        {"sub": "owner@example.com", "exp": datetime.now(UTC) + timedelta(minutes=5)},
        "another_key",
        algorithm="HS256",
    )
    with patch("salla_alerts.core.auth.get_app_settings", return_value=mock_settings):
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(bearer(token))
    assert exc_info.value.status_code == 401


def test_expired_token(mock_settings: AppSettings) -> None:
    token = jwt.encode(
        {"sub": "owner@example.com", "exp": datetime.now(UTC) - timedelta(minutes=5)},
        "test_secret_key",
        algorithm="HS256",
    )
    with patch("salla_alerts.core.auth.get_app_settings", return_value=mock_settings):
        with pytest.raises(HTTPException):
            get_current_user(bearer(token))


def test_token_without_subject(mock_settings: AppSettings) -> None:
    token = jwt.encode(
        {"exp": datetime.now(UTC) + timedelta(minutes=5)}, "test_secret_key", algorithm="HS256"
    )
    with patch("salla_alerts.core.auth.get_app_settings", return_value=mock_settings):
        with pytest.raises(HTTPException):
            get_current_user(bearer(token))


def test_me_endpoint() -> None:
    client = TestClient(app)
    token = create_access_token("owner@example.com")

    response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json()["email"] == "owner@example.com"


def test_me_endpoint_rejects_bad_token() -> None:
    client = TestClient(app)
    response = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401
