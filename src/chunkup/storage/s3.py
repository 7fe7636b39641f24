"""S3 (and S3-compatible) multipart backend."""

import logging
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from chunkup.core.config import settings
from chunkup.core.exceptions import BackendError, ConfigurationError, ValidationError
from chunkup.storage.base import CompletedPart, MultipartBackend

logger = logging.getLogger(__name__)

# S3 error codes caused by the request rather than by the service
_CLIENT_SIDE_CODES = {"InvalidPart", "InvalidPartOrder", "EntityTooSmall", "NoSuchUpload"}


class S3MultipartBackend(MultipartBackend):
    """S3 multipart upload backend built on boto3."""

    def __init__(self, bucket: str | None = None, client: Any = None):
        self.bucket = bucket if bucket is not None else settings.S3_BUCKET
        self._client = client

    def is_configured(self) -> bool:
        if not self.bucket:
            return False
        if self._client is not None:
            return True
        # Explicit keys must come in pairs; otherwise the default chain is used
        return bool(settings.S3_ACCESS_KEY_ID) == bool(settings.S3_SECRET_ACCESS_KEY)

    def _get_client(self):
        """Lazy-load and cache the boto3 client."""
        if self._client is None:
            if not self.is_configured():
                raise ConfigurationError("S3_BUCKET not configured")

            client_kwargs: dict[str, Optional[str]] = {
                "region_name": settings.S3_REGION,
                "endpoint_url": settings.s3_endpoint,
            }
            if settings.S3_ACCESS_KEY_ID:
                client_kwargs["aws_access_key_id"] = settings.S3_ACCESS_KEY_ID
                client_kwargs["aws_secret_access_key"] = settings.S3_SECRET_ACCESS_KEY

            self._client = boto3.client(
                "s3",
                config=Config(
                    signature_version="s3v4",
                    s3={"addressing_style": "path" if settings.S3_FORCE_PATH_STYLE else "auto"},
                ),
                **client_kwargs,
            )
        return self._client

    def _raise_backend_error(self, action: str, e: Exception, **details: Any) -> None:
        if isinstance(e, ClientError):
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code in _CLIENT_SIDE_CODES:
                raise ValidationError(
                    f"S3 rejected {action}: {error_code}", field="upload_id", s3_code=error_code, **details
                ) from e
            if error_code in ("AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch", "NoSuchBucket"):
                raise ConfigurationError(f"S3 {action} failed: {error_code}", s3_code=error_code) from e
        logger.error(
            f"S3 {action} failed",
            extra={"bucket": self.bucket, "error": str(e), **details},
        )
        raise BackendError(f"S3 {action} failed: {e}", **details) from e

    def create_multipart(self, key: str) -> str:
        client = self._get_client()
        try:
            response = client.create_multipart_upload(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            self._raise_backend_error("create_multipart_upload", e, key=key)
        return response["UploadId"]

    def upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        client = self._get_client()
        try:
            response = client.upload_part(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=data,
            )
        except (BotoCoreError, ClientError) as e:
            self._raise_backend_error("upload_part", e, key=key, part_number=part_number)
        return response["ETag"]

    def complete_multipart(self, key: str, upload_id: str, parts: list[CompletedPart]) -> str:
        client = self._get_client()
        try:
            response = client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={
                    "Parts": [{"PartNumber": p.part_number, "ETag": p.etag} for p in parts]
                },
            )
        except (BotoCoreError, ClientError) as e:
            self._raise_backend_error("complete_multipart_upload", e, key=key)
        return response.get("Location") or f"s3://{self.bucket}/{key}"

    def abort_multipart(self, key: str, upload_id: str) -> None:
        client = self._get_client()
        try:
            client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "NoSuchUpload":
                return
            self._raise_backend_error("abort_multipart_upload", e, key=key)
        except BotoCoreError as e:
            self._raise_backend_error("abort_multipart_upload", e, key=key)

    def get_backend_name(self) -> str:
        return "s3"
