"""
Upload client

Splits files into chunks and uploads them through a chunkup server (over
HTTP) or an in-process orchestrator, with bounded parallelism and retry.
"""

from chunkup.client.scheduler import (
    ChunkScheduler,
    ChunkTask,
    TaskState,
    UploadConfig,
    UploadResult,
    UploadStats,
    plan_chunks,
    upload_file,
)
from chunkup.client.transport import (
    HTTPUploadTransport,
    LocalUploadTransport,
    UploadTransport,
    fetch_upload_token,
)

__all__ = [
    "ChunkScheduler",
    "ChunkTask",
    "TaskState",
    "UploadConfig",
    "UploadResult",
    "UploadStats",
    "plan_chunks",
    "upload_file",
    "HTTPUploadTransport",
    "LocalUploadTransport",
    "UploadTransport",
    "fetch_upload_token",
]
