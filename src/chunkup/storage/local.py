"""Local filesystem multipart backend."""

import hashlib
import logging
import re
import shutil
from pathlib import Path
from uuid import uuid4

from chunkup.core.config import settings
from chunkup.core.exceptions import BackendError, ValidationError
from chunkup.storage.base import CompletedPart, MultipartBackend

logger = logging.getLogger(__name__)


class LocalMultipartBackend(MultipartBackend):
    """Local filesystem backend.

    Parts live under ``<base>/.multipart/<upload_id>/<part_number>`` until the
    upload is completed, then get concatenated into ``<base>/<key>``.
    """

    def __init__(self, base_path: str | Path | None = None):
        self.base_path = Path(base_path or settings.LOCAL_STORAGE_PATH)

    def is_configured(self) -> bool:
        return bool(str(self.base_path))

    def _parts_dir(self, upload_id: str) -> Path:
        if not re.fullmatch(r"[A-Za-z0-9-]+", upload_id):
            raise ValidationError("Malformed upload_id", field="upload_id", received=upload_id)
        return self.base_path / ".multipart" / upload_id

    def _target_path(self, key: str) -> Path:
        safe_key = self._sanitize_key(key)
        return self.base_path / safe_key

    def create_multipart(self, key: str) -> str:
        upload_id = uuid4().hex
        parts_dir = self._parts_dir(upload_id)
        try:
            parts_dir.mkdir(parents=True, exist_ok=False)
            (parts_dir / ".key").write_text(key, encoding="utf-8")
        except OSError as e:
            raise BackendError(f"Failed to create multipart upload: {e}", key=key) from e
        return upload_id

    def upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        parts_dir = self._parts_dir(upload_id)
        if not parts_dir.is_dir():
            raise BackendError("Multipart upload does not exist", upload_id=upload_id)

        part_path = parts_dir / str(part_number)
        tmp_path = parts_dir / f"{part_number}.{uuid4().hex}.tmp"
        try:
            tmp_path.write_bytes(data)
            # last write wins for concurrent writers of the same part
            tmp_path.replace(part_path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise BackendError(f"Failed to store part {part_number}: {e}", upload_id=upload_id) from e

        return hashlib.md5(data).hexdigest()

    def complete_multipart(self, key: str, upload_id: str, parts: list[CompletedPart]) -> str:
        parts_dir = self._parts_dir(upload_id)
        if not parts_dir.is_dir():
            raise BackendError("Multipart upload does not exist", upload_id=upload_id)

        recorded_key = (parts_dir / ".key").read_text(encoding="utf-8")
        if recorded_key != key:
            raise ValidationError(
                "Key does not match the multipart upload", field="key", received=key, expected=recorded_key
            )

        sources = []
        for part in parts:
            part_path = parts_dir / str(part.part_number)
            if not part_path.exists():
                raise ValidationError(
                    f"Part {part.part_number} was never uploaded",
                    field="parts",
                    part_number=part.part_number,
                )
            if hashlib.md5(part_path.read_bytes()).hexdigest() != part.etag:
                raise ValidationError(
                    f"ETag mismatch for part {part.part_number}",
                    field="parts",
                    part_number=part.part_number,
                    received=part.etag,
                )
            sources.append(part_path)

        target_path = self._target_path(key)
        try:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            with open(target_path, "wb") as out:
                for part_path in sources:
                    with open(part_path, "rb") as f:
                        shutil.copyfileobj(f, out)
            shutil.rmtree(parts_dir)
        except OSError as e:
            raise BackendError(f"Failed to assemble {key}: {e}", upload_id=upload_id) from e

        return str(target_path)

    def abort_multipart(self, key: str, upload_id: str) -> None:
        parts_dir = self._parts_dir(upload_id)
        try:
            shutil.rmtree(parts_dir, ignore_errors=False)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise BackendError(f"Failed to abort upload: {e}", upload_id=upload_id) from e

    def get_backend_name(self) -> str:
        return "local"

    @staticmethod
    def _sanitize_key(key: str) -> str:
        """Remove path traversal and dangerous characters."""
        safe = key.replace("../", "").replace("..\\", "")
        safe = safe.replace("/", "_").replace("\\", "_")
        safe = re.sub(r"[^a-zA-Z0-9._-]", "_", safe)
        return safe[:255]
