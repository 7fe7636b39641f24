"""Upload session API routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, File, Form, Request, UploadFile

from chunkup.core.security import require_upload_access
from chunkup.models.upload import (
    AbortUploadRequest,
    AbortUploadResponse,
    ChunkUploadResponse,
    CompleteUploadRequest,
    CompleteUploadResponse,
    SessionResponse,
    StartUploadRequest,
    StartUploadResponse,
)
from chunkup.services.orchestrator import SessionOrchestrator

router = APIRouter(
    prefix="/api/v1/upload",
    tags=["upload"],
    dependencies=[Depends(require_upload_access)],
)
logger = logging.getLogger(__name__)


def get_orchestrator(request: Request) -> SessionOrchestrator:
    return request.app.state.orchestrator


@router.post("/start", response_model=StartUploadResponse, status_code=201)
async def start_upload(
    request: StartUploadRequest = Body(...),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> StartUploadResponse:
    """Open a multipart upload session."""
    return await orchestrator.start_upload(
        file_id=request.file_id,
        extension=request.file_extension,
        compressed=request.compressed,
    )


@router.post("/chunk", response_model=ChunkUploadResponse)
async def upload_chunk(
    chunk: UploadFile = File(...),
    file_id: str = Form(...),
    upload_id: str = Form(...),
    chunk_number: str = Form(...),
    file_extension: Optional[str] = Form(None),
    compressed: bool = Form(False),
    original_size: Optional[int] = Form(None),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> ChunkUploadResponse:
    """Accept one chunk of a multipart upload."""
    body = await chunk.read()
    result = await orchestrator.upload_chunk(
        file_id=file_id,
        upload_id=upload_id,
        chunk_number=chunk_number,
        body=body,
        extension=file_extension,
        compressed=compressed,
    )
    if original_size is not None and compressed:
        logger.debug(
            "Compressed chunk received",
            extra={
                "upload_id": upload_id,
                "part_number": result.part_number,
                "wire_bytes": len(body),
                "original_size": original_size,
            },
        )
    return result


@router.post("/complete", response_model=CompleteUploadResponse)
async def complete_upload(
    request: CompleteUploadRequest = Body(...),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> CompleteUploadResponse:
    """Finalize a multipart upload from its acknowledged parts."""
    return await orchestrator.complete_upload(
        file_id=request.file_id,
        upload_id=request.upload_id,
        parts=request.parts,
        filename=request.filename,
        extension=request.file_extension,
    )


@router.post("/abort", response_model=AbortUploadResponse)
async def abort_upload(
    request: AbortUploadRequest = Body(...),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> AbortUploadResponse:
    """Discard a multipart upload and its stored parts."""
    return await orchestrator.abort_upload(file_id=request.file_id, upload_id=request.upload_id)


@router.get("/sessions/{upload_id}", response_model=SessionResponse)
async def get_session(
    upload_id: str,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> SessionResponse:
    """Return the tracked state of an upload session."""
    session = orchestrator.get_session(upload_id)
    return SessionResponse(
        file_id=session.file_id,
        upload_id=session.upload_id,
        key=session.storage_key,
        state=session.state.value,
        compressed=session.compressed,
        parts_received=sorted(session.parts),
        bytes_received=session.bytes_received,
        created_at=session.created_at,
        expires_at=session.expires_at,
    )
