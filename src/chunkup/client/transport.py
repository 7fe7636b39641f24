"""Transports carrying upload protocol calls from the scheduler to a server."""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from chunkup.core.config import settings
from chunkup.core.exceptions import (
    AuthorizationError,
    BackendError,
    ChunkUploadException,
    ConfigurationError,
    DecompressionError,
    SessionNotFoundError,
    SessionStateError,
    ValidationError,
)
from chunkup.models.upload import (
    AbortUploadResponse,
    ChunkUploadResponse,
    CompleteUploadResponse,
    PartInfo,
    StartUploadResponse,
)
from chunkup.services.orchestrator import SessionOrchestrator

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/upload"

_ERRORS_BY_CODE: dict[str, type[ChunkUploadException]] = {
    cls.code: cls
    for cls in (
        ValidationError,
        DecompressionError,
        SessionNotFoundError,
        SessionStateError,
        ConfigurationError,
        BackendError,
        AuthorizationError,
    )
}


class UploadTransport(ABC):
    """The four protocol calls the chunk scheduler depends on."""

    @abstractmethod
    async def start_upload(
        self, file_id: str, extension: Optional[str], compressed: bool
    ) -> StartUploadResponse:
        pass

    @abstractmethod
    async def upload_chunk(
        self,
        file_id: str,
        upload_id: str,
        chunk_number: int,
        data: bytes,
        extension: Optional[str],
        compressed: bool,
        original_size: int,
    ) -> ChunkUploadResponse:
        pass

    @abstractmethod
    async def complete_upload(
        self,
        file_id: str,
        upload_id: str,
        parts: list[PartInfo],
        filename: str,
        extension: Optional[str],
    ) -> CompleteUploadResponse:
        pass

    @abstractmethod
    async def abort_upload(self, file_id: str, upload_id: str) -> AbortUploadResponse:
        pass

    async def aclose(self) -> None:
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class LocalUploadTransport(UploadTransport):
    """Drives an in-process orchestrator directly."""

    def __init__(self, orchestrator: SessionOrchestrator):
        self.orchestrator = orchestrator

    async def start_upload(self, file_id, extension, compressed):
        return await self.orchestrator.start_upload(file_id, extension=extension, compressed=compressed)

    async def upload_chunk(self, file_id, upload_id, chunk_number, data, extension, compressed, original_size):
        return await self.orchestrator.upload_chunk(
            file_id=file_id,
            upload_id=upload_id,
            chunk_number=chunk_number,
            body=data,
            extension=extension,
            compressed=compressed,
        )

    async def complete_upload(self, file_id, upload_id, parts, filename, extension):
        return await self.orchestrator.complete_upload(
            file_id=file_id,
            upload_id=upload_id,
            parts=parts,
            filename=filename,
            extension=extension,
        )

    async def abort_upload(self, file_id, upload_id):
        return await self.orchestrator.abort_upload(file_id=file_id, upload_id=upload_id)


def error_from_response(response: httpx.Response) -> ChunkUploadException:
    """Map an error response onto the upload error taxonomy."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    detail = body.get("detail") or f"HTTP {response.status_code}"
    if not isinstance(detail, str):
        detail = str(detail)
    details = {k: v for k, v in body.items() if k not in ("error", "detail")}
    details["status_code"] = response.status_code

    error_cls = _ERRORS_BY_CODE.get(body.get("error", ""))
    if error_cls is None:
        status = response.status_code
        if status in (401, 403):
            error_cls = AuthorizationError
        elif status == 404:
            error_cls = SessionNotFoundError
        elif status == 409:
            error_cls = SessionStateError
        elif status == 422:
            error_cls = DecompressionError
        elif status == 503:
            error_cls = ConfigurationError
        elif 400 <= status < 500:
            error_cls = ValidationError
        else:
            error_cls = BackendError

    return error_cls(detail, **details)


class HTTPUploadTransport(UploadTransport):
    """Talks to a chunkup server over HTTP.

    Authenticates with either an API key or a bearer token from
    ``fetch_upload_token``. Timeouts and connection failures surface as
    ``BackendError`` so the scheduler retries them.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        token: Optional[str] = None,
        token_expiry: Optional[float] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.token = token
        self.token_expiry = token_expiry
        self._owns_client = client is None
        if timeout is None:
            timeout = settings.CLIENT_REQUEST_TIMEOUT
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    def _auth_headers(self) -> dict[str, str]:
        if self.token:
            if self.token_expiry is not None and time.time() >= self.token_expiry:
                raise AuthorizationError("Upload token has expired")
            return {"Authorization": f"Bearer {self.token}"}
        if self.api_key:
            return {"X-API-Key": self.api_key}
        return {}

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        headers = {**self._auth_headers(), **kwargs.pop("headers", {})}
        try:
            response = await self._client.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise BackendError(f"Request to {path} timed out", error_type="timeout") from e
        except httpx.TransportError as e:
            raise BackendError(f"Request to {path} failed: {e}", error_type="transport_error") from e

        if response.is_error:
            raise error_from_response(response)
        return response.json()

    async def start_upload(self, file_id, extension, compressed):
        payload = await self._request(
            "POST",
            f"{API_PREFIX}/start",
            json={"file_id": file_id, "file_extension": extension, "compressed": compressed},
        )
        return StartUploadResponse(**payload)

    async def upload_chunk(self, file_id, upload_id, chunk_number, data, extension, compressed, original_size):
        form = {
            "file_id": file_id,
            "upload_id": upload_id,
            "chunk_number": str(chunk_number),
            "compressed": "true" if compressed else "false",
            "original_size": str(original_size),
        }
        if extension:
            form["file_extension"] = extension
        payload = await self._request(
            "POST",
            f"{API_PREFIX}/chunk",
            data=form,
            files={"chunk": (f"chunk-{chunk_number}", data, "application/octet-stream")},
        )
        return ChunkUploadResponse(**payload)

    async def complete_upload(self, file_id, upload_id, parts, filename, extension):
        payload = await self._request(
            "POST",
            f"{API_PREFIX}/complete",
            json={
                "file_id": file_id,
                "upload_id": upload_id,
                "filename": filename,
                "file_extension": extension,
                "parts": [{"part_number": p.part_number, "etag": p.etag} for p in parts],
            },
        )
        return CompleteUploadResponse(**payload)

    async def abort_upload(self, file_id, upload_id):
        payload = await self._request(
            "POST", f"{API_PREFIX}/abort", json={"file_id": file_id, "upload_id": upload_id}
        )
        return AbortUploadResponse(**payload)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


async def fetch_upload_token(
    base_url: str,
    api_key: str,
    timeout: float = 10.0,
    client: Optional[httpx.AsyncClient] = None,
) -> tuple[str, float]:
    """Exchange an API key for a short-lived upload token.

    Returns:
        Tuple of (token, absolute expiry as a unix timestamp)

    Raises:
        AuthorizationError: If the API key is rejected
        BackendError: If the server cannot be reached
    """
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=timeout)
    try:
        response = await client.post(f"{base_url.rstrip('/')}/auth/token", headers={"X-API-Key": api_key})
    except httpx.HTTPError as e:
        raise BackendError(f"Token request failed: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    if response.is_error:
        raise error_from_response(response)

    payload = response.json()
    return payload["token"], time.time() + payload["expires_in"]
