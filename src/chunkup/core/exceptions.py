"""Exception hierarchy for the chunked upload protocol."""

from typing import Any


class ChunkUploadException(Exception):
    """Base exception for the upload protocol.

    Carries structured details (offending field, received values, counts) so
    callers can report or retry deterministically.
    """

    code = "upload_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.message, **self.details}


class ValidationError(ChunkUploadException):
    """Malformed, missing or out-of-order input. Never retried automatically."""

    code = "validation_error"

    def __init__(self, message: str, field: str | None = None, **details: Any):
        super().__init__(message, field=field, **details)
        self.field = field


class DecompressionError(ValidationError):
    """Compressed chunk payload could not be decompressed."""

    code = "decompression_error"


class SessionNotFoundError(ValidationError):
    """No upload session is known for the given upload_id."""

    code = "session_not_found"


class SessionStateError(ValidationError):
    """Operation not allowed in the session's current state."""

    code = "session_state_error"


class ConfigurationError(ChunkUploadException):
    """Storage backend missing or misconfigured. Fatal for the session."""

    code = "configuration_error"


class BackendError(ChunkUploadException):
    """Transient storage or network failure. The only retryable class."""

    code = "backend_error"


class AuthorizationError(ChunkUploadException):
    """Request rejected by the auth gate."""

    code = "authorization_error"


class ChunkUploadError(ChunkUploadException):
    """A single chunk failed terminally, aborting the whole upload."""

    code = "chunk_upload_error"

    def __init__(self, chunk_number: int, cause: Exception, attempts: int = 1):
        super().__init__(
            f"Chunk {chunk_number} failed after {attempts} attempt(s): {cause}",
            chunk_number=chunk_number,
            attempts=attempts,
            cause=type(cause).__name__,
            transient=isinstance(cause, BackendError),
        )
        self.chunk_number = chunk_number
        self.cause = cause
        self.attempts = attempts


class AggregateUploadError(ChunkUploadException):
    """Part set incomplete after every chunk task settled."""

    code = "aggregate_upload_error"

    def __init__(self, missing: list[int], total_chunks: int):
        super().__init__(
            f"{len(missing)} of {total_chunks} chunks were not acknowledged",
            missing=missing,
            total_chunks=total_chunks,
        )
        self.missing = missing
        self.total_chunks = total_chunks
