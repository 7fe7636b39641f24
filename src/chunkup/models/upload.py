"""Upload data models."""

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class PartInfo(BaseModel):
    """One acknowledged part as reported by the client."""

    model_config = ConfigDict(populate_by_name=True)

    part_number: int = Field(..., validation_alias=AliasChoices("part_number", "partNumber", "PartNumber"))
    etag: str = Field(..., validation_alias=AliasChoices("etag", "eTag", "ETag"))


class StartUploadRequest(BaseModel):
    """Request model for opening a multipart upload."""

    file_id: str = Field(..., validation_alias=AliasChoices("file_id", "fileId"))
    file_extension: Optional[str] = Field(None, validation_alias=AliasChoices("file_extension", "fileExtension"))
    compressed: bool = False


class StartUploadResponse(BaseModel):
    """Response model for an opened multipart upload."""

    upload_id: str
    key: str


class ChunkUploadResponse(BaseModel):
    """Response model for an accepted chunk."""

    etag: str
    part_number: int


class CompleteUploadRequest(BaseModel):
    """Request model for finalizing a multipart upload."""

    file_id: str = Field(..., validation_alias=AliasChoices("file_id", "fileId"))
    upload_id: str = Field(..., validation_alias=AliasChoices("upload_id", "uploadId"))
    filename: str = ""
    file_extension: Optional[str] = Field(None, validation_alias=AliasChoices("file_extension", "fileExtension"))
    parts: list[PartInfo] = Field(default_factory=list)


class CompleteUploadResponse(BaseModel):
    """Response model for a finalized object."""

    location: str
    key: str
    extension: Optional[str] = None
    filename: Optional[str] = None


class AbortUploadRequest(BaseModel):
    """Request model for discarding a multipart upload."""

    file_id: str = Field(..., validation_alias=AliasChoices("file_id", "fileId"))
    upload_id: str = Field(..., validation_alias=AliasChoices("upload_id", "uploadId"))


class AbortUploadResponse(BaseModel):
    """Response model for a discarded multipart upload."""

    upload_id: str
    key: str
    state: str


class SessionResponse(BaseModel):
    """Read-only view of a tracked upload session."""

    file_id: str
    upload_id: str
    key: str
    state: str
    compressed: bool
    parts_received: list[int]
    bytes_received: int
    created_at: datetime
    expires_at: datetime


class TokenResponse(BaseModel):
    """Short-lived upload token."""

    token: str
    expires_in: int
