"""Multipart upload session tracking store."""

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional


class SessionState(str, Enum):
    """Upload session state."""

    CREATED = "created"  # Multipart upload opened, no part received yet
    UPLOADING = "uploading"  # At least one part accepted
    COMPLETED = "completed"  # Object assembled by the backend
    ABORTED = "aborted"  # Backend upload discarded


@dataclass
class PartRecord:
    """Latest accepted part for one part number."""

    part_number: int
    etag: str
    size_bytes: int
    uploaded_at: datetime


@dataclass
class UploadSession:
    """Multipart upload session metadata."""

    file_id: str
    upload_id: str
    storage_key: str
    extension: Optional[str]
    compressed: bool
    state: SessionState
    created_at: datetime
    expires_at: datetime
    updated_at: Optional[datetime] = None
    parts: Dict[int, PartRecord] = field(default_factory=dict)

    @property
    def is_finished(self) -> bool:
        return self.state in (SessionState.COMPLETED, SessionState.ABORTED)

    @property
    def bytes_received(self) -> int:
        return sum(part.size_bytes for part in self.parts.values())


class SessionStore:
    """In-memory store for upload sessions, keyed by upload_id.

    Handlers run blocking backend calls in worker threads, so every mutation
    takes the store lock. Readers get copies, never the live record.
    """

    def __init__(self, ttl: timedelta = timedelta(hours=24)):
        self.ttl = ttl
        self._sessions: Dict[str, UploadSession] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def create(
        self,
        file_id: str,
        upload_id: str,
        storage_key: str,
        extension: Optional[str] = None,
        compressed: bool = False,
    ) -> UploadSession:
        """Store a new session in the CREATED state."""
        now = self._now()
        session = UploadSession(
            file_id=file_id,
            upload_id=upload_id,
            storage_key=storage_key,
            extension=extension,
            compressed=compressed,
            state=SessionState.CREATED,
            created_at=now,
            expires_at=now + self.ttl,
        )
        with self._lock:
            self._sessions[upload_id] = session
        return self._copy(session)

    def get(self, upload_id: str) -> Optional[UploadSession]:
        """Retrieve a session by upload_id."""
        with self._lock:
            session = self._sessions.get(upload_id)
            return self._copy(session) if session else None

    def record_part(self, upload_id: str, part_number: int, etag: str, size_bytes: int) -> None:
        """Record an accepted part, replacing any earlier one with the same number."""
        with self._lock:
            session = self._sessions.get(upload_id)
            if session is None or session.is_finished:
                return
            now = self._now()
            session.parts[part_number] = PartRecord(
                part_number=part_number, etag=etag, size_bytes=size_bytes, uploaded_at=now
            )
            session.state = SessionState.UPLOADING
            session.updated_at = now
            # Activity keeps the session alive
            session.expires_at = now + self.ttl

    def update_state(self, upload_id: str, state: SessionState) -> None:
        """Update session state."""
        with self._lock:
            session = self._sessions.get(upload_id)
            if session is not None:
                session.state = state
                session.updated_at = self._now()

    def remove(self, upload_id: str) -> None:
        with self._lock:
            self._sessions.pop(upload_id, None)

    def list_expired(self, now: Optional[datetime] = None) -> list[UploadSession]:
        """List sessions whose expiry has passed."""
        now = now or self._now()
        with self._lock:
            return [self._copy(s) for s in self._sessions.values() if s.expires_at <= now]

    def list_all(self) -> list[UploadSession]:
        """List all sessions."""
        with self._lock:
            return [self._copy(s) for s in self._sessions.values()]

    @staticmethod
    def _copy(session: UploadSession) -> UploadSession:
        return replace(session, parts=dict(session.parts))
