"""Pytest configuration and shared fixtures."""

import asyncio
from typing import Optional

import pytest

from chunkup.client.transport import LocalUploadTransport
from chunkup.core.exceptions import BackendError
from chunkup.services.orchestrator import SessionOrchestrator
from chunkup.storage.local import LocalMultipartBackend
from chunkup.storage.session_store import SessionStore


@pytest.fixture
def local_backend(tmp_path):
    """Local multipart backend rooted in a temporary directory."""
    return LocalMultipartBackend(base_path=tmp_path / "uploads")


@pytest.fixture
def orchestrator(local_backend):
    """Orchestrator over the temporary local backend."""
    return SessionOrchestrator(backend=local_backend, store=SessionStore())


@pytest.fixture
def local_transport(orchestrator):
    """Transport driving the orchestrator in process."""
    return LocalUploadTransport(orchestrator)


class InstrumentedTransport(LocalUploadTransport):
    """Local transport that counts concurrent chunk calls and injects failures.

    Args:
        orchestrator: Orchestrator to forward to
        failures: Mapping of chunk number to how many times it should fail
            with a transient error before succeeding
        delay: Seconds each chunk call stays in flight
    """

    def __init__(
        self,
        orchestrator: SessionOrchestrator,
        failures: Optional[dict[int, int]] = None,
        delay: float = 0.0,
        fatal_error: Optional[Exception] = None,
        fatal_chunk: Optional[int] = None,
    ):
        super().__init__(orchestrator)
        self.failures = dict(failures or {})
        self.delay = delay
        self.fatal_error = fatal_error
        self.fatal_chunk = fatal_chunk
        self.in_flight = 0
        self.peak_in_flight = 0
        self.calls: list[int] = []
        self.aborted: list[str] = []

    async def upload_chunk(self, file_id, upload_id, chunk_number, data, extension, compressed, original_size):
        self.calls.append(chunk_number)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if self.fatal_error is not None and chunk_number == self.fatal_chunk:
                raise self.fatal_error
            if self.failures.get(chunk_number, 0) > 0:
                self.failures[chunk_number] -= 1
                raise BackendError(f"Simulated transient failure for chunk {chunk_number}")
            return await super().upload_chunk(
                file_id, upload_id, chunk_number, data, extension, compressed, original_size
            )
        finally:
            self.in_flight -= 1

    async def abort_upload(self, file_id, upload_id):
        self.aborted.append(upload_id)
        return await super().abort_upload(file_id, upload_id)
