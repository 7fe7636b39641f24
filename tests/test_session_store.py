"""Tests for the upload session store."""

from datetime import datetime, timedelta, timezone

import pytest

from chunkup.storage.session_store import SessionState, SessionStore


@pytest.fixture
def session_store():
    """Create a fresh session store for each test."""
    return SessionStore(ttl=timedelta(hours=1))


@pytest.fixture
def sample_session(session_store):
    """Create a sample session."""
    return session_store.create(
        file_id="test-uuid-123",
        upload_id="upload-abc",
        storage_key="test-uuid-123.csv",
        extension="csv",
    )


def test_create_session(session_store, sample_session):
    """Test creating a session."""
    retrieved = session_store.get("upload-abc")

    assert retrieved is not None
    assert retrieved.file_id == "test-uuid-123"
    assert retrieved.storage_key == "test-uuid-123.csv"
    assert retrieved.state is SessionState.CREATED
    assert retrieved.parts == {}
    assert retrieved.expires_at - retrieved.created_at == timedelta(hours=1)


def test_get_nonexistent_session(session_store):
    """Test retrieving a session that doesn't exist."""
    assert session_store.get("nonexistent-id") is None


def test_list_all_empty(session_store):
    """Test listing all sessions when store is empty."""
    assert session_store.list_all() == []


def test_record_part_overwrites(session_store, sample_session):
    """Test the latest part for a number replaces the earlier one."""
    session_store.record_part("upload-abc", 1, "etag-old", 10)
    session_store.record_part("upload-abc", 1, "etag-new", 12)
    session_store.record_part("upload-abc", 2, "etag-2", 5)

    session = session_store.get("upload-abc")
    assert session.state is SessionState.UPLOADING
    assert session.parts[1].etag == "etag-new"
    assert sorted(session.parts) == [1, 2]
    assert session.bytes_received == 17


def test_record_part_ignored_for_finished_session(session_store, sample_session):
    """Test parts are not recorded once a session is finished."""
    session_store.update_state("upload-abc", SessionState.ABORTED)
    session_store.record_part("upload-abc", 1, "etag", 10)

    session = session_store.get("upload-abc")
    assert session.parts == {}
    assert session.is_finished


def test_get_returns_copy(session_store, sample_session):
    """Test callers cannot mutate stored sessions through a returned copy."""
    copy = session_store.get("upload-abc")
    copy.state = SessionState.COMPLETED
    copy.parts[9] = None

    stored = session_store.get("upload-abc")
    assert stored.state is SessionState.CREATED
    assert stored.parts == {}


def test_list_expired(session_store, sample_session):
    """Test only sessions past their expiry are listed."""
    session_store.create(file_id="f2", upload_id="upload-2", storage_key="f2")

    assert session_store.list_expired() == []
    later = datetime.now(timezone.utc) + timedelta(hours=2)
    assert {s.upload_id for s in session_store.list_expired(later)} == {"upload-abc", "upload-2"}


def test_remove(session_store, sample_session):
    """Test removing a session."""
    session_store.remove("upload-abc")
    session_store.remove("upload-abc")

    assert session_store.get("upload-abc") is None
    assert session_store.list_all() == []
