"""Client-side chunk scheduler.

Splits a file into fixed-size chunks, decides once whether to compress them,
and pushes them through a fixed pool of ``max_parallel`` workers fed from a
work queue. Each chunk is a small state machine::

    pending -> in_flight -> acked
                   |
                   +-> retrying -> in_flight   (BackendError only, bounded)
                   +-> failed                  (terminal, fails the upload)
"""

import asyncio
import logging
import math
import os
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from chunkup.client.transport import UploadTransport
from chunkup.core.config import settings
from chunkup.core.exceptions import (
    AggregateUploadError,
    BackendError,
    ChunkUploadError,
    ChunkUploadException,
    ValidationError,
)
from chunkup.models.upload import PartInfo
from chunkup.services.compression import CompressionDecision, CompressionMode, compress, decide

logger = logging.getLogger(__name__)

MB = 1024 * 1024

UploadSource = Union[str, os.PathLike, bytes, bytearray, memoryview, BinaryIO]
ProgressCallback = Callable[[int, int], None]
ChunkCallback = Callable[[int, int], None]


class TaskState(str, Enum):
    """Lifecycle of one chunk upload."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    RETRYING = "retrying"
    ACKED = "acked"
    FAILED = "failed"


@dataclass
class ChunkTask:
    """One chunk of the source file, covering bytes ``[start, end)``."""

    chunk_number: int
    start: int
    end: int
    max_retries: int = 3
    retries_used: int = 0
    state: TaskState = TaskState.PENDING
    etag: Optional[str] = None
    last_error: Optional[Exception] = None

    @property
    def size(self) -> int:
        return self.end - self.start


def plan_chunks(size: int, chunk_size: int, max_retries: int = 3) -> list[ChunkTask]:
    """Split ``[0, size)`` into contiguous, disjoint chunks of ``chunk_size``.

    The last chunk may be shorter. Chunk numbers start at 1.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    total_chunks = math.ceil(size / chunk_size)
    return [
        ChunkTask(
            chunk_number=index + 1,
            start=index * chunk_size,
            end=min((index + 1) * chunk_size, size),
            max_retries=max_retries,
        )
        for index in range(total_chunks)
    ]


def split_extension(filename: str) -> Optional[str]:
    name = Path(filename).name
    if "." not in name:
        return None
    return name.rsplit(".", 1)[1] or None


class UploadConfig(BaseModel):
    """Tuning knobs for one upload."""

    chunk_size: int = Field(default_factory=lambda: settings.DEFAULT_CHUNK_SIZE, gt=0)
    max_parallel: int = Field(default_factory=lambda: settings.DEFAULT_MAX_PARALLEL, ge=1)
    compression_mode: CompressionMode = Field(
        default_factory=lambda: CompressionMode.parse(settings.DEFAULT_COMPRESSION_MODE)
    )
    max_retries_per_chunk: int = Field(default_factory=lambda: settings.DEFAULT_MAX_RETRIES, ge=0)
    compression_threshold: float = Field(default_factory=lambda: settings.COMPRESSION_THRESHOLD, gt=0)
    retry_backoff_initial: float = Field(0.5, ge=0)
    retry_backoff_max: float = Field(8.0, ge=0)
    abort_on_failure: bool = True


class UploadStats(BaseModel):
    """Timing and throughput of a finished upload."""

    total_time_seconds: float
    upload_speed_mbps: float
    original_size_bytes: int
    compressed_size_bytes: Optional[int] = None
    compression_ratio: Optional[float] = None
    total_chunks: int
    chunk_size: int
    parallel_uploads: int
    retries: int
    compression_mode: str
    compression_enabled: bool
    compression_threshold: float


class UploadResult(BaseModel):
    """Outcome of a successful upload."""

    file_id: str
    upload_id: str
    key: str
    location: str
    filename: str
    extension: Optional[str] = None
    size: int
    stats: UploadStats


class _ByteSource:
    """Random-access reader over a path, an in-memory buffer or a file object."""

    def __init__(self, source: UploadSource):
        self._path: Optional[Path] = None
        self._buffer: Optional[memoryview] = None
        self._file: Optional[BinaryIO] = None
        self._lock = threading.Lock()

        if isinstance(source, (str, os.PathLike)):
            self._path = Path(source)
            self.size = self._path.stat().st_size
            self.name: Optional[str] = self._path.name
        elif isinstance(source, (bytes, bytearray, memoryview)):
            self._buffer = memoryview(source).cast("B")
            self.size = len(self._buffer)
            self.name = None
        else:
            self._file = source
            self._file.seek(0, os.SEEK_END)
            self.size = self._file.tell()
            raw_name = getattr(source, "name", None)
            self.name = Path(raw_name).name if isinstance(raw_name, str) else None

    def read(self, start: int, end: int) -> bytes:
        if self._buffer is not None:
            return bytes(self._buffer[start:end])
        if self._path is not None:
            with open(self._path, "rb") as f:
                f.seek(start)
                return f.read(end - start)
        with self._lock:
            self._file.seek(start)
            return self._file.read(end - start)


@dataclass
class _UploadContext:
    """Mutable state shared by the workers of one upload."""

    file_id: str
    upload_id: str
    extension: Optional[str]
    decision: CompressionDecision
    total_size: int
    total_chunks: int
    sent_bytes: int = 0
    compressed_bytes: int = 0
    in_flight: int = 0
    peak_in_flight: int = 0


class ChunkScheduler:
    """Uploads one file at a time through an ``UploadTransport``."""

    def __init__(
        self,
        transport: UploadTransport,
        config: Optional[UploadConfig] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_chunk_complete: Optional[ChunkCallback] = None,
    ):
        self.transport = transport
        self.config = config or UploadConfig()
        self.on_progress = on_progress
        self.on_chunk_complete = on_chunk_complete

    async def upload(self, source: UploadSource, filename: Optional[str] = None) -> UploadResult:
        """Upload a file and return the finalized object's location.

        Args:
            source: Path, bytes, or seekable binary file object
            filename: Name reported to the server; defaults to the path name

        Raises:
            ValidationError: If the source is empty or rejected by the server
            ChunkUploadError: If a chunk fails terminally
            AggregateUploadError: If the part set is incomplete after settling
        """
        config = self.config
        data = _ByteSource(source)
        file_id = str(uuid4())
        filename = filename or data.name or file_id
        extension = split_extension(filename)

        if data.size == 0:
            raise ValidationError("Cannot upload an empty file", field="size", received=0)

        tasks = plan_chunks(data.size, config.chunk_size, config.max_retries_per_chunk)
        started = time.monotonic()

        sample = await asyncio.to_thread(data.read, 0, min(config.chunk_size, data.size))
        decision = await asyncio.to_thread(
            decide, config.compression_mode, sample, config.compression_threshold
        )
        logger.info(
            "Starting upload",
            extra={
                "file_id": file_id,
                "upload_name": filename,
                "size_bytes": data.size,
                "total_chunks": len(tasks),
                "compression_enabled": decision.enabled,
                "compression_ratio_sample": decision.sample_ratio,
            },
        )

        started_upload = await self.transport.start_upload(file_id, extension, decision.enabled)
        ctx = _UploadContext(
            file_id=file_id,
            upload_id=started_upload.upload_id,
            extension=extension,
            decision=decision,
            total_size=data.size,
            total_chunks=len(tasks),
        )

        try:
            await self._run_pool(data, tasks, ctx)

            missing = [task.chunk_number for task in tasks if task.state is not TaskState.ACKED]
            if missing:
                raise AggregateUploadError(missing=missing, total_chunks=len(tasks))

            parts = [PartInfo(part_number=task.chunk_number, etag=task.etag) for task in tasks]
            completed = await self.transport.complete_upload(
                file_id, ctx.upload_id, parts, filename, extension
            )
        except Exception as e:
            await self._abort_after_failure(ctx, e)
            raise

        elapsed = max(time.monotonic() - started, 1e-9)
        stats = UploadStats(
            total_time_seconds=round(elapsed, 3),
            upload_speed_mbps=round((data.size / MB) / elapsed, 3),
            original_size_bytes=data.size,
            compressed_size_bytes=ctx.compressed_bytes if decision.enabled else None,
            compression_ratio=round(ctx.compressed_bytes / data.size, 4) if decision.enabled else None,
            total_chunks=len(tasks),
            chunk_size=config.chunk_size,
            parallel_uploads=config.max_parallel,
            retries=sum(task.retries_used for task in tasks),
            compression_mode=decision.mode.value,
            compression_enabled=decision.enabled,
            compression_threshold=decision.threshold,
        )
        logger.info(
            "Upload complete",
            extra={
                "file_id": file_id,
                "upload_id": ctx.upload_id,
                "location": completed.location,
                "elapsed_seconds": stats.total_time_seconds,
                "speed_mbps": stats.upload_speed_mbps,
                "retries": stats.retries,
                "peak_in_flight": ctx.peak_in_flight,
            },
        )
        return UploadResult(
            file_id=file_id,
            upload_id=ctx.upload_id,
            key=completed.key,
            location=completed.location,
            filename=filename,
            extension=extension,
            size=data.size,
            stats=stats,
        )

    async def _run_pool(self, data: _ByteSource, tasks: list[ChunkTask], ctx: _UploadContext) -> None:
        queue: asyncio.Queue[ChunkTask] = asyncio.Queue()
        for task in tasks:
            queue.put_nowait(task)

        workers = [
            asyncio.create_task(self._worker(queue, data, ctx), name=f"chunk-worker-{i}")
            for i in range(min(self.config.max_parallel, len(tasks)))
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            # One failed chunk fails the upload; stop siblings and drop queued work
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

    async def _worker(self, queue: "asyncio.Queue[ChunkTask]", data: _ByteSource, ctx: _UploadContext) -> None:
        while True:
            try:
                task = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            await self._process(task, data, ctx)

    async def _process(self, task: ChunkTask, data: _ByteSource, ctx: _UploadContext) -> None:
        raw = await asyncio.to_thread(data.read, task.start, task.end)
        payload = await asyncio.to_thread(compress, raw) if ctx.decision.enabled else raw

        retrying = AsyncRetrying(
            stop=stop_after_attempt(task.max_retries + 1),
            wait=wait_exponential(
                multiplier=self.config.retry_backoff_initial,
                max=self.config.retry_backoff_max,
            ),
            retry=retry_if_exception_type(BackendError),
            before_sleep=lambda retry_state: self._mark_retrying(task, ctx, retry_state),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    task.state = TaskState.IN_FLIGHT
                    ctx.in_flight += 1
                    ctx.peak_in_flight = max(ctx.peak_in_flight, ctx.in_flight)
                    try:
                        response = await self.transport.upload_chunk(
                            ctx.file_id,
                            ctx.upload_id,
                            task.chunk_number,
                            payload,
                            ctx.extension,
                            ctx.decision.enabled,
                            task.size,
                        )
                    finally:
                        ctx.in_flight -= 1
        except ChunkUploadException as e:
            task.state = TaskState.FAILED
            task.last_error = e
            logger.error(
                "Chunk failed",
                extra={
                    "file_id": ctx.file_id,
                    "upload_id": ctx.upload_id,
                    "chunk_number": task.chunk_number,
                    "attempts": task.retries_used + 1,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            raise ChunkUploadError(task.chunk_number, e, attempts=task.retries_used + 1) from e

        task.etag = response.etag
        task.state = TaskState.ACKED
        ctx.sent_bytes += task.size
        if ctx.decision.enabled:
            ctx.compressed_bytes += len(payload)

        if self.on_progress:
            self.on_progress(ctx.sent_bytes, ctx.total_size)
        if self.on_chunk_complete:
            self.on_chunk_complete(task.chunk_number, ctx.total_chunks)

    @staticmethod
    def _mark_retrying(task: ChunkTask, ctx: _UploadContext, retry_state: RetryCallState) -> None:
        task.retries_used += 1
        task.state = TaskState.RETRYING
        task.last_error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"Retrying chunk {task.chunk_number} (retry {task.retries_used}/{task.max_retries})",
            extra={
                "file_id": ctx.file_id,
                "upload_id": ctx.upload_id,
                "chunk_number": task.chunk_number,
                "retry": task.retries_used,
                "max_retries": task.max_retries,
                "error": str(task.last_error),
            },
        )

    async def _abort_after_failure(self, ctx: _UploadContext, error: Exception) -> None:
        if not self.config.abort_on_failure:
            return
        try:
            await self.transport.abort_upload(ctx.file_id, ctx.upload_id)
            logger.info(
                "Upload aborted after failure",
                extra={"file_id": ctx.file_id, "upload_id": ctx.upload_id, "error": str(error)},
            )
        except ChunkUploadException as abort_error:
            logger.warning(
                "Failed to abort upload",
                extra={"file_id": ctx.file_id, "upload_id": ctx.upload_id, "error": str(abort_error)},
            )


async def upload_file(
    source: UploadSource,
    transport: UploadTransport,
    config: Optional[UploadConfig] = None,
    filename: Optional[str] = None,
    **callbacks: Callable[[int, int], None],
) -> UploadResult:
    """Upload one file with a fresh scheduler."""
    scheduler = ChunkScheduler(transport, config, **callbacks)
    return await scheduler.upload(source, filename=filename)
