"""Server-side coordinator for multipart upload sessions.

The orchestrator validates every request, delegates to the injected storage
backend and enforces part sequencing at completion. Blocking backend calls
run in worker threads so the event loop keeps serving other chunks.
"""

import asyncio
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any, Optional, Union

from chunkup.core.config import settings
from chunkup.core.exceptions import (
    BackendError,
    ConfigurationError,
    SessionNotFoundError,
    SessionStateError,
    ValidationError,
)
from chunkup.core.logging import upload_id_context
from chunkup.models.upload import (
    AbortUploadResponse,
    ChunkUploadResponse,
    CompleteUploadResponse,
    PartInfo,
    StartUploadResponse,
)
from chunkup.services.compression import decompress
from chunkup.storage.base import CompletedPart, MultipartBackend
from chunkup.storage.session_store import SessionState, SessionStore, UploadSession

logger = logging.getLogger(__name__)

PartLike = Union[PartInfo, Mapping[str, Any]]


def build_storage_key(file_id: str, extension: Optional[str] = None) -> str:
    """Derive the object key: ``file_id`` or ``file_id.extension``."""
    return f"{file_id}.{extension}" if extension else file_id


def normalize_extension(extension: Optional[str]) -> Optional[str]:
    if extension is None:
        return None
    extension = extension.strip().lstrip(".")
    if not extension:
        return None
    if "/" in extension or "\\" in extension:
        raise ValidationError("Invalid file extension", field="file_extension", received=extension)
    return extension


def parse_chunk_number(chunk_number: Any) -> int:
    """Parse a chunk number into an integer >= 1."""
    if isinstance(chunk_number, bool):
        raise ValidationError("chunk_number must be an integer", field="chunk_number", received=chunk_number)
    try:
        value = int(str(chunk_number).strip())
    except (TypeError, ValueError):
        raise ValidationError(
            "chunk_number must be an integer", field="chunk_number", received=chunk_number
        ) from None
    if value < 1:
        raise ValidationError("chunk_number must be >= 1", field="chunk_number", received=value)
    return value


def order_parts(parts: Iterable[PartLike]) -> list[CompletedPart]:
    """Sort parts by number and check they form exactly ``1..N``.

    Raises:
        ValidationError: If the list is empty, malformed, or has gaps/duplicates
    """
    completed = []
    for index, part in enumerate(parts or []):
        if isinstance(part, PartInfo):
            raw_number, etag = part.part_number, part.etag
        elif isinstance(part, Mapping):
            raw_number = part.get("part_number", part.get("partNumber"))
            etag = part.get("etag", part.get("eTag"))
        else:
            raise ValidationError("Malformed part entry", field="parts", index=index)
        if not etag:
            raise ValidationError("Part is missing its etag", field="parts", index=index)
        try:
            if isinstance(raw_number, bool):
                raise ValueError(raw_number)
            part_number = int(str(raw_number).strip())
        except (TypeError, ValueError):
            raise ValidationError(
                "Part number must be an integer", field="parts", index=index, received=raw_number
            ) from None
        completed.append(CompletedPart(part_number=part_number, etag=str(etag)))

    if not completed:
        raise ValidationError("parts must be a non-empty list", field="parts")

    completed.sort(key=lambda p: p.part_number)
    received = [p.part_number for p in completed]
    for index, part in enumerate(completed):
        if part.part_number != index + 1:
            raise ValidationError(
                f"Parts are not sequential: expected part {index + 1}, got {part.part_number}",
                field="parts",
                expected=list(range(1, len(completed) + 1)),
                received=received,
            )
    return completed


class SessionOrchestrator:
    """Owns upload session lifecycle on top of a multipart backend."""

    def __init__(
        self,
        backend: MultipartBackend,
        store: SessionStore | None = None,
        max_part_bytes: int | None = None,
    ):
        self.backend = backend
        self.store = store if store is not None else SessionStore()
        self.max_part_bytes = max_part_bytes if max_part_bytes is not None else settings.max_chunk_bytes

    def _require_configured(self) -> None:
        if not self.backend.is_configured():
            raise ConfigurationError(
                f"Storage backend '{self.backend.get_backend_name()}' is not configured",
                backend=self.backend.get_backend_name(),
            )

    def _require_session(self, file_id: str, upload_id: str) -> UploadSession:
        session = self.store.get(upload_id)
        if session is None:
            raise SessionNotFoundError("Unknown upload_id", field="upload_id", received=upload_id)
        if session.file_id != file_id:
            raise ValidationError(
                "file_id does not match the upload session", field="file_id", received=file_id
            )
        if session.is_finished:
            raise SessionStateError(
                f"Upload session is already {session.state.value}",
                field="upload_id",
                state=session.state.value,
            )
        return session

    @staticmethod
    def _require_field(name: str, value: Optional[str]) -> str:
        if value is None or not str(value).strip():
            raise ValidationError(f"{name} is required", field=name)
        return str(value).strip()

    async def start_upload(
        self, file_id: str, extension: Optional[str] = None, compressed: bool = False
    ) -> StartUploadResponse:
        """Open a multipart upload for one file.

        Args:
            file_id: Client-generated file identifier
            extension: Optional extension hint appended to the key
            compressed: Whether the client will send compressed chunks

        Returns:
            Backend upload id and object key
        """
        file_id = self._require_field("file_id", file_id)
        extension = normalize_extension(extension)
        self._require_configured()

        key = build_storage_key(file_id, extension)
        upload_id = await asyncio.to_thread(self.backend.create_multipart, key)
        upload_id_context.set(upload_id)
        self.store.create(
            file_id=file_id,
            upload_id=upload_id,
            storage_key=key,
            extension=extension,
            compressed=compressed,
        )

        logger.info(
            "Multipart upload started",
            extra={
                "file_id": file_id,
                "upload_id": upload_id,
                "key": key,
                "compressed": compressed,
                "backend": self.backend.get_backend_name(),
            },
        )
        return StartUploadResponse(upload_id=upload_id, key=key)

    async def upload_chunk(
        self,
        file_id: str,
        upload_id: str,
        chunk_number: Any,
        body: bytes,
        extension: Optional[str] = None,
        compressed: bool = False,
    ) -> ChunkUploadResponse:
        """Accept one chunk and forward it to the backend as a part.

        Re-sending a chunk number overwrites the earlier part, which is what
        makes client retries safe.
        """
        file_id = self._require_field("file_id", file_id)
        upload_id = self._require_field("upload_id", upload_id)
        upload_id_context.set(upload_id)
        part_number = parse_chunk_number(chunk_number)
        if not body:
            raise ValidationError("Chunk body is empty", field="body", chunk_number=part_number)

        data = await asyncio.to_thread(decompress, body) if compressed else body
        if len(data) > self.max_part_bytes:
            raise ValidationError(
                "Chunk exceeds maximum part size",
                field="body",
                received=len(data),
                limit=self.max_part_bytes,
            )

        session = self._require_session(file_id, upload_id)
        key = build_storage_key(file_id, normalize_extension(extension))
        if key != session.storage_key:
            raise ValidationError(
                "file_extension does not match the upload session",
                field="file_extension",
                received=extension,
            )

        etag = await asyncio.to_thread(self.backend.upload_part, key, upload_id, part_number, data)
        self.store.record_part(upload_id, part_number, etag, len(data))

        logger.debug(
            "Part uploaded",
            extra={
                "file_id": file_id,
                "upload_id": upload_id,
                "part_number": part_number,
                "size_bytes": len(data),
                "wire_bytes": len(body),
            },
        )
        return ChunkUploadResponse(etag=etag, part_number=part_number)

    async def complete_upload(
        self,
        file_id: str,
        upload_id: str,
        parts: Iterable[PartLike],
        filename: Optional[str] = None,
        extension: Optional[str] = None,
    ) -> CompleteUploadResponse:
        """Assemble the acknowledged parts into the final object.

        Parts may arrive in any order; after sorting they must be exactly
        ``1..N``. A sequencing failure is terminal: the backend upload is
        aborted before the error is raised.
        """
        file_id = self._require_field("file_id", file_id)
        upload_id = self._require_field("upload_id", upload_id)
        upload_id_context.set(upload_id)
        extension = normalize_extension(extension)
        session = self._require_session(file_id, upload_id)
        key = build_storage_key(file_id, extension)
        if key != session.storage_key:
            raise ValidationError(
                "file_extension does not match the upload session",
                field="file_extension",
                received=extension,
            )

        try:
            ordered = order_parts(parts)
        except ValidationError as e:
            logger.warning(
                "Rejected completion, aborting upload",
                extra={"file_id": file_id, "upload_id": upload_id, **e.details},
            )
            try:
                await self._abort(session)
            except BackendError as abort_error:
                # Session stays open so the expiry sweep retries the abort
                logger.warning(
                    "Failed to abort rejected upload",
                    extra={"file_id": file_id, "upload_id": upload_id, "error": str(abort_error)},
                )
            raise e

        location = await asyncio.to_thread(self.backend.complete_multipart, key, upload_id, ordered)
        self.store.update_state(upload_id, SessionState.COMPLETED)

        logger.info(
            "Multipart upload completed",
            extra={
                "file_id": file_id,
                "upload_id": upload_id,
                "key": key,
                "parts": len(ordered),
                "location": location,
            },
        )
        return CompleteUploadResponse(location=location, key=key, extension=extension, filename=filename)

    async def abort_upload(self, file_id: str, upload_id: str) -> AbortUploadResponse:
        """Discard a multipart upload. Aborting twice is a no-op."""
        file_id = self._require_field("file_id", file_id)
        upload_id = self._require_field("upload_id", upload_id)
        upload_id_context.set(upload_id)
        session = self.store.get(upload_id)
        if session is None:
            raise SessionNotFoundError("Unknown upload_id", field="upload_id", received=upload_id)
        if session.file_id != file_id:
            raise ValidationError(
                "file_id does not match the upload session", field="file_id", received=file_id
            )
        if session.state is SessionState.COMPLETED:
            raise SessionStateError("Upload session is already completed", field="upload_id", state="completed")

        if session.state is not SessionState.ABORTED:
            await self._abort(session)
            logger.info(
                "Multipart upload aborted",
                extra={"file_id": file_id, "upload_id": upload_id, "key": session.storage_key},
            )
        return AbortUploadResponse(
            upload_id=upload_id, key=session.storage_key, state=SessionState.ABORTED.value
        )

    async def _abort(self, session: UploadSession) -> None:
        await asyncio.to_thread(self.backend.abort_multipart, session.storage_key, session.upload_id)
        self.store.update_state(session.upload_id, SessionState.ABORTED)

    def get_session(self, upload_id: str) -> UploadSession:
        session = self.store.get(upload_id)
        if session is None:
            raise SessionNotFoundError("Unknown upload_id", field="upload_id", received=upload_id)
        return session

    async def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Abort and forget expired sessions.

        Returns:
            Number of sessions removed
        """
        removed = 0
        for session in self.store.list_expired(now):
            if not session.is_finished:
                try:
                    await self._abort(session)
                except BackendError as e:
                    # Keep the session so the next sweep retries the abort
                    logger.warning(
                        "Failed to abort expired upload",
                        extra={"upload_id": session.upload_id, "error": str(e)},
                    )
                    continue
                logger.info(
                    "Expired upload aborted",
                    extra={"file_id": session.file_id, "upload_id": session.upload_id},
                )
            self.store.remove(session.upload_id)
            removed += 1
        return removed
