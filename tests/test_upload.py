"""Tests for the upload session HTTP API."""

import io
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from chunkup.core.config import settings
from chunkup.main import create_app
from chunkup.services.compression import compress
from chunkup.storage.local import LocalMultipartBackend

API_HEADERS = {"X-API-Key": "default-dev-key"}


@pytest.fixture
def auth_settings(monkeypatch):
    """Pin the auth settings the API tests rely on."""
    monkeypatch.setattr(settings, "AUTH_ENABLED", True)
    monkeypatch.setattr(settings, "API_KEY", "default-dev-key")


@pytest.fixture
def client(tmp_path, auth_settings):
    """Create test client over a temporary local backend."""
    app = create_app(backend=LocalMultipartBackend(base_path=tmp_path))
    return TestClient(app, headers=API_HEADERS)


def start(client, file_id="file-1", extension="csv", compressed=False):
    response = client.post(
        "/api/v1/upload/start",
        json={"file_id": file_id, "file_extension": extension, "compressed": compressed},
    )
    assert response.status_code == 201
    return response.json()


def send_chunk(client, upload_id, chunk_number, body, file_id="file-1", extension="csv", compressed=False):
    return client.post(
        "/api/v1/upload/chunk",
        data={
            "file_id": file_id,
            "upload_id": upload_id,
            "chunk_number": str(chunk_number),
            "file_extension": extension,
            "compressed": "true" if compressed else "false",
        },
        files={"chunk": ("blob", io.BytesIO(body), "application/octet-stream")},
    )


def test_full_upload_flow(client, tmp_path):
    """Test start, out-of-order chunks and completion produce the file."""
    started = start(client)
    assert started["key"] == "file-1.csv"
    upload_id = started["upload_id"]

    second = send_chunk(client, upload_id, 2, b"Jane,25\n")
    first = send_chunk(client, upload_id, 1, b"name,age\nJohn,30\n")
    assert first.status_code == 200
    assert second.json()["part_number"] == 2

    response = client.post(
        "/api/v1/upload/complete",
        json={
            "file_id": "file-1",
            "upload_id": upload_id,
            "filename": "people.csv",
            "file_extension": "csv",
            "parts": [
                {"partNumber": 2, "eTag": second.json()["etag"]},
                {"part_number": 1, "etag": first.json()["etag"]},
            ],
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["key"] == "file-1.csv"
    assert data["extension"] == "csv"
    assert data["filename"] == "people.csv"
    assert Path(data["location"]).read_bytes() == b"name,age\nJohn,30\nJane,25\n"
    assert Path(data["location"]).parent == tmp_path


def test_compressed_chunk_is_inflated(client):
    """Test compressed chunks are stored decompressed."""
    upload_id = start(client, compressed=True)["upload_id"]
    payload = b"a,b,c\n" * 500

    response = send_chunk(client, upload_id, 1, compress(payload), compressed=True)
    assert response.status_code == 200

    session = client.get(f"/api/v1/upload/sessions/{upload_id}").json()
    assert session["bytes_received"] == len(payload)
    assert session["parts_received"] == [1]
    assert session["state"] == "uploading"
    assert session["compressed"] is True


def test_corrupt_compressed_chunk(client):
    """Test an undecodable compressed chunk is a 422."""
    upload_id = start(client, compressed=True)["upload_id"]

    response = send_chunk(client, upload_id, 1, b"not deflate", compressed=True)

    assert response.status_code == 422
    assert response.json()["error"] == "decompression_error"
    assert response.json()["field"] == "body"


@pytest.mark.parametrize("chunk_number", ["0", "-1", "abc", "1.5"])
def test_invalid_chunk_number(client, chunk_number):
    """Test chunk numbers below one or non-integers are rejected."""
    upload_id = start(client)["upload_id"]

    response = send_chunk(client, upload_id, chunk_number, b"data")

    assert response.status_code == 400
    assert response.json()["field"] == "chunk_number"


def test_missing_chunk_body(client):
    """Test a chunk request without the file part is a 400."""
    upload_id = start(client)["upload_id"]

    response = client.post(
        "/api/v1/upload/chunk",
        data={"file_id": "file-1", "upload_id": upload_id, "chunk_number": "1"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"
    assert response.json()["field"] == "chunk"


def test_start_missing_file_id(client):
    """Test start without file_id is a 400."""
    response = client.post("/api/v1/upload/start", json={"file_extension": "csv"})

    assert response.status_code == 400
    assert response.json()["field"] == "file_id"


def test_unknown_upload_id(client):
    """Test chunks for an unknown session are a 404."""
    response = send_chunk(client, "0123abcd", 1, b"data")

    assert response.status_code == 404
    assert response.json()["error"] == "session_not_found"


def test_extension_mismatch(client):
    """Test chunks must target the key the session was opened for."""
    upload_id = start(client, extension="csv")["upload_id"]

    response = send_chunk(client, upload_id, 1, b"data", extension="txt")

    assert response.status_code == 400
    assert response.json()["field"] == "file_extension"


def test_gap_in_parts_aborts_session(client):
    """Test a completion with a missing part is rejected and aborts the upload."""
    upload_id = start(client)["upload_id"]
    etags = {n: send_chunk(client, upload_id, n, b"x" * n).json()["etag"] for n in (1, 3)}

    response = client.post(
        "/api/v1/upload/complete",
        json={
            "file_id": "file-1",
            "upload_id": upload_id,
            "file_extension": "csv",
            "parts": [{"part_number": n, "etag": etag} for n, etag in etags.items()],
        },
    )

    assert response.status_code == 400
    body = response.json()
    assert body["field"] == "parts"
    assert body["expected"] == [1, 2]
    assert body["received"] == [1, 3]

    followup = send_chunk(client, upload_id, 2, b"late")
    assert followup.status_code == 409
    assert followup.json()["state"] == "aborted"


def test_empty_parts_rejected(client):
    """Test completion requires at least one part."""
    upload_id = start(client)["upload_id"]

    response = client.post(
        "/api/v1/upload/complete",
        json={"file_id": "file-1", "upload_id": upload_id, "file_extension": "csv", "parts": []},
    )

    assert response.status_code == 400
    assert response.json()["field"] == "parts"


def test_abort_is_idempotent(client):
    """Test aborting twice succeeds and blocks further chunks."""
    upload_id = start(client)["upload_id"]
    send_chunk(client, upload_id, 1, b"data")

    for _ in range(2):
        response = client.post(
            "/api/v1/upload/abort", json={"file_id": "file-1", "upload_id": upload_id}
        )
        assert response.status_code == 200
        assert response.json() == {"upload_id": upload_id, "key": "file-1.csv", "state": "aborted"}

    assert send_chunk(client, upload_id, 2, b"data").status_code == 409


def test_abort_after_complete_conflicts(client):
    """Test a completed upload cannot be aborted."""
    upload_id = start(client)["upload_id"]
    etag = send_chunk(client, upload_id, 1, b"data").json()["etag"]
    client.post(
        "/api/v1/upload/complete",
        json={
            "file_id": "file-1",
            "upload_id": upload_id,
            "file_extension": "csv",
            "parts": [{"part_number": 1, "etag": etag}],
        },
    )

    response = client.post("/api/v1/upload/abort", json={"file_id": "file-1", "upload_id": upload_id})

    assert response.status_code == 409
    assert response.json()["error"] == "session_state_error"


def test_get_unknown_session(client):
    """Test session lookup for an unknown id is a 404."""
    response = client.get("/api/v1/upload/sessions/missing")

    assert response.status_code == 404


def test_unconfigured_backend_is_503(tmp_path, auth_settings):
    """Test start fails with 503 when the backend is not configured."""
    app = create_app(backend=LocalMultipartBackend(base_path=tmp_path))
    app.state.orchestrator.backend.is_configured = lambda: False
    client = TestClient(app, headers=API_HEADERS)

    response = client.post("/api/v1/upload/start", json={"file_id": "file-1"})

    assert response.status_code == 503
    assert response.json()["error"] == "configuration_error"
