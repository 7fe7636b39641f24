"""Tests for the upload access gate and token issuing."""

import io
import time

import jwt
import pytest
from fastapi.testclient import TestClient

from chunkup.core.config import settings
from chunkup.core.security import create_upload_token, decode_upload_token
from chunkup.main import create_app
from chunkup.storage.local import LocalMultipartBackend

JWT_SECRET = "test-secret-with-enough-bytes-for-hs256"


@pytest.fixture
def auth_settings(monkeypatch):
    """Enable auth with known secrets."""
    monkeypatch.setattr(settings, "AUTH_ENABLED", True)
    monkeypatch.setattr(settings, "API_KEY", "test-api-key")
    monkeypatch.setattr(settings, "JWT_SECRET", JWT_SECRET)
    monkeypatch.setattr(settings, "TOKEN_TTL_SECONDS", 600)


@pytest.fixture
def client(tmp_path, auth_settings):
    """Create test client without default credentials."""
    return TestClient(create_app(backend=LocalMultipartBackend(base_path=tmp_path)))


def test_issue_token(client):
    """Test an API key can be exchanged for a bearer token."""
    response = client.post("/auth/token", headers={"X-API-Key": "test-api-key"})

    assert response.status_code == 200
    data = response.json()
    assert data["expires_in"] == 600
    assert decode_upload_token(data["token"])["type"] == "upload"


def test_issue_token_bad_key(client):
    """Test a wrong API key gets no token."""
    response = client.post("/auth/token", headers={"X-API-Key": "wrong"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid API key"


def test_upload_requires_credentials(client):
    """Test session operations reject anonymous requests."""
    response = client.post("/api/v1/upload/start", json={"file_id": "f"})

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_upload_with_api_key(client):
    """Test the API key header opens the gate."""
    response = client.post(
        "/api/v1/upload/start", json={"file_id": "f"}, headers={"X-API-Key": "test-api-key"}
    )

    assert response.status_code == 201


def test_upload_with_bearer_token(client):
    """Test an issued token opens the gate for every session operation."""
    token = client.post("/auth/token", headers={"X-API-Key": "test-api-key"}).json()["token"]
    headers = {"Authorization": f"Bearer {token}"}

    upload_id = client.post("/api/v1/upload/start", json={"file_id": "f"}, headers=headers).json()["upload_id"]
    response = client.post(
        "/api/v1/upload/chunk",
        data={"file_id": "f", "upload_id": upload_id, "chunk_number": "1"},
        files={"chunk": ("blob", io.BytesIO(b"data"), "application/octet-stream")},
        headers=headers,
    )

    assert response.status_code == 200


def test_expired_token_rejected(client):
    """Test an expired token is refused."""
    token, _ = create_upload_token(ttl_seconds=-10)

    response = client.post(
        "/api/v1/upload/start", json={"file_id": "f"}, headers={"Authorization": f"Bearer {token}"}
    )

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired token"


def test_foreign_token_rejected(client):
    """Test tokens of another type or signed with another secret are refused."""
    now = int(time.time())
    wrong_type = jwt.encode({"type": "access", "exp": now + 60}, JWT_SECRET, algorithm="HS256")
    wrong_secret = jwt.encode({"type": "upload", "exp": now + 60}, JWT_SECRET[::-1], algorithm="HS256")

    for token in (wrong_type, wrong_secret):
        response = client.get(
            "/api/v1/upload/sessions/anything", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401


def test_auth_disabled(client, monkeypatch):
    """Test the gate is open when auth is disabled."""
    monkeypatch.setattr(settings, "AUTH_ENABLED", False)

    response = client.post("/api/v1/upload/start", json={"file_id": "f"})

    assert response.status_code == 201


def test_health_is_public(client):
    """Test health does not require credentials."""
    assert client.get("/health").status_code == 200
