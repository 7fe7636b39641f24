"""Google Cloud Storage multipart backend.

GCS has no S3-style multipart session in the JSON API, so parts are written
as temporary blobs under ``<key>.parts/<upload_id>/`` and stitched together
with ``compose`` on completion.
"""

import logging
from typing import Optional
from uuid import uuid4

from google.api_core.exceptions import GoogleAPIError, NotFound
from google.cloud import storage

from chunkup.core.config import settings
from chunkup.core.exceptions import BackendError, ConfigurationError, ValidationError
from chunkup.storage.base import CompletedPart, MultipartBackend

logger = logging.getLogger(__name__)

# GCS accepts at most 32 source objects per compose request
MAX_COMPOSE_SOURCES = 32


class GCSMultipartBackend(MultipartBackend):
    """Google Cloud Storage backend using parallel composite uploads."""

    def __init__(self, bucket_name: str | None = None):
        self.bucket_name = bucket_name if bucket_name is not None else settings.GCS_BUCKET_NAME
        self._client: Optional[storage.Client] = None
        self._bucket: Optional[storage.Bucket] = None

    def is_configured(self) -> bool:
        return bool(self.bucket_name)

    def _get_bucket(self) -> storage.Bucket:
        """Lazy-load and cache GCS bucket."""
        if self._bucket is None:
            if not self.bucket_name:
                raise ConfigurationError("GCS_BUCKET_NAME not configured")

            self._client = storage.Client(project=settings.GCP_PROJECT_ID or None)
            self._bucket = self._client.bucket(self.bucket_name)

        return self._bucket

    @staticmethod
    def _parts_prefix(key: str, upload_id: str) -> str:
        return f"{key}.parts/{upload_id}/"

    def _part_name(self, key: str, upload_id: str, part_number: int) -> str:
        return f"{self._parts_prefix(key, upload_id)}{part_number:05d}"

    def create_multipart(self, key: str) -> str:
        # Nothing exists server side until the first part lands
        self._get_bucket()
        return uuid4().hex

    def upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        bucket = self._get_bucket()
        blob = bucket.blob(self._part_name(key, upload_id, part_number))
        try:
            blob.upload_from_string(data, content_type="application/octet-stream")
        except GoogleAPIError as e:
            logger.error(
                "Failed to upload part to GCS",
                extra={"bucket": self.bucket_name, "key": key, "part_number": part_number, "error": str(e)},
            )
            raise BackendError(f"GCS part upload failed: {e}", part_number=part_number) from e
        return blob.etag or blob.md5_hash

    def complete_multipart(self, key: str, upload_id: str, parts: list[CompletedPart]) -> str:
        bucket = self._get_bucket()
        prefix = self._parts_prefix(key, upload_id)

        try:
            stored = {blob.name: blob for blob in bucket.list_blobs(prefix=prefix)}
        except GoogleAPIError as e:
            raise BackendError(f"Failed to list parts: {e}", key=key) from e

        sources = []
        for part in parts:
            blob = stored.get(self._part_name(key, upload_id, part.part_number))
            if blob is None:
                raise ValidationError(
                    f"Part {part.part_number} was never uploaded",
                    field="parts",
                    part_number=part.part_number,
                )
            if part.etag not in (blob.etag, blob.md5_hash):
                raise ValidationError(
                    f"ETag mismatch for part {part.part_number}",
                    field="parts",
                    part_number=part.part_number,
                    received=part.etag,
                )
            sources.append(blob)

        destination = bucket.blob(key)
        try:
            destination.compose(sources[:MAX_COMPOSE_SOURCES])
            remaining = sources[MAX_COMPOSE_SOURCES:]
            while remaining:
                batch = remaining[: MAX_COMPOSE_SOURCES - 1]
                remaining = remaining[MAX_COMPOSE_SOURCES - 1 :]
                destination.compose([destination] + batch)
            bucket.delete_blobs(list(stored.values()), on_error=lambda blob: None)
        except GoogleAPIError as e:
            logger.error(
                "Failed to compose object in GCS",
                extra={"bucket": self.bucket_name, "key": key, "parts": len(sources), "error": str(e)},
            )
            raise BackendError(f"GCS compose failed: {e}", key=key) from e

        return f"gs://{self.bucket_name}/{key}"

    def abort_multipart(self, key: str, upload_id: str) -> None:
        bucket = self._get_bucket()
        try:
            blobs = list(bucket.list_blobs(prefix=self._parts_prefix(key, upload_id)))
            if blobs:
                bucket.delete_blobs(blobs, on_error=lambda blob: None)
        except NotFound:
            return
        except GoogleAPIError as e:
            raise BackendError(f"Failed to abort upload: {e}", key=key) from e

    def get_backend_name(self) -> str:
        return "gcs"
