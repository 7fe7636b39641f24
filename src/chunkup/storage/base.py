"""Abstract multipart storage backend interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class CompletedPart:
    """One acknowledged part handed to ``complete_multipart``."""

    part_number: int
    etag: str


class MultipartBackend(ABC):
    """Abstract base class for multipart-capable storage backends.

    Implementations translate library failures into ``BackendError`` and a
    missing bucket/credentials setup into ``ConfigurationError``.
    """

    @abstractmethod
    def is_configured(self) -> bool:
        """Return True if the backend has everything it needs to run."""
        pass

    @abstractmethod
    def create_multipart(self, key: str) -> str:
        """Open a multipart upload for ``key``.

        Args:
            key: Object key the parts will be assembled into

        Returns:
            Backend-assigned upload id
        """
        pass

    @abstractmethod
    def upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        """Store one part, overwriting any earlier part with the same number.

        Args:
            key: Object key of the multipart upload
            upload_id: Upload id returned by ``create_multipart``
            part_number: 1-based part number
            data: Uncompressed part bytes

        Returns:
            ETag of the stored part
        """
        pass

    @abstractmethod
    def complete_multipart(self, key: str, upload_id: str, parts: list[CompletedPart]) -> str:
        """Assemble the parts, in the given order, into the final object.

        Returns:
            Location of the assembled object
        """
        pass

    @abstractmethod
    def abort_multipart(self, key: str, upload_id: str) -> None:
        """Discard a multipart upload and every part stored for it."""
        pass

    @abstractmethod
    def get_backend_name(self) -> str:
        """Return backend identifier."""
        pass
