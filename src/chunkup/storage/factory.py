"""Storage backend selection."""

from chunkup.core.config import settings
from chunkup.core.exceptions import ConfigurationError
from chunkup.storage.base import MultipartBackend

_backend_instance: MultipartBackend | None = None


def get_storage_backend() -> MultipartBackend:
    """Return the process-wide backend selected by ``STORAGE_BACKEND``.

    Raises:
        ConfigurationError: If ``STORAGE_BACKEND`` names no known backend
    """
    global _backend_instance
    if _backend_instance is not None:
        return _backend_instance

    backend_name = settings.STORAGE_BACKEND.lower()
    if backend_name == "local":
        from chunkup.storage.local import LocalMultipartBackend

        _backend_instance = LocalMultipartBackend()
    elif backend_name == "s3":
        from chunkup.storage.s3 import S3MultipartBackend

        _backend_instance = S3MultipartBackend()
    elif backend_name == "gcs":
        from chunkup.storage.gcs import GCSMultipartBackend

        _backend_instance = GCSMultipartBackend()
    else:
        raise ConfigurationError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")
    return _backend_instance


def reset_storage_backend() -> None:
    """Drop the cached backend so the next call re-reads settings."""
    global _backend_instance
    _backend_instance = None
