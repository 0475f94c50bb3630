"""
File Routes: upload, browse, rename, delete, share.

Uploads are persisted before their tagging job is queued; a queue failure
never fails the upload.
"""
from datetime import datetime
from typing import List, Optional
import logging
import os

from fastapi import APIRouter, Depends, File, Header, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse
from pydantic import BaseModel

from cloudstore.core.config import settings
from cloudstore.core.exceptions import DatabaseUnavailableError
from cloudstore.core.limiter import limiter, UPLOAD_LIMIT, READ_LIMIT, WRITE_LIMIT
from cloudstore.services.file_repository import FileRecord, FileRepository
from cloudstore.services.storage import StorageProvider, sanitize_filename

logger = logging.getLogger(__name__)
router = APIRouter()

CHUNK_SIZE = 64 * 1024  # 64KB chunks

class FileOut(BaseModel):
    id: str
    file_name: str
    file_path: str
    mime_type: Optional[str] = None
    size: int
    upload_date: datetime
    owner_id: str
    ai_tags: List[str]

class UploadResponse(BaseModel):
    message: str
    queued: bool
    file: FileOut

class TagsResponse(BaseModel):
    file_id: str
    status: str
    ai_tags: List[str]

class RenameRequest(BaseModel):
    new_name: str

class RenameResponse(BaseModel):
    message: str
    file: FileOut

class DeleteResponse(BaseModel):
    success: bool
    message: str

class ShareResponse(BaseModel):
    success: bool
    share_url: str

# ─── Dependencies ────────────────────────────────────────────────────────────

def get_owner_id(x_owner_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity, resolved upstream by the auth layer."""
    if not x_owner_id or not x_owner_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_owner_id.strip()

def _repository(request: Request) -> FileRepository:
    return request.app.state.repository

def _storage(request: Request) -> StorageProvider:
    return request.app.state.storage

async def _get_owned_file(request: Request, file_id: str, owner_id: str) -> FileRecord:
    record = await run_in_threadpool(_repository(request).find_by_id, file_id)
    if not record:
        raise HTTPException(status_code=404, detail="File not found")
    if record.owner_id != owner_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    return record

# ─── Routes ──────────────────────────────────────────────────────────────────

@router.post("/upload", response_model=UploadResponse, status_code=201)
@limiter.limit(UPLOAD_LIMIT)
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    owner_id: str = Depends(get_owner_id),
):
    """
    Stores the file, records it with empty tags, and queues it for tagging.
    """
    storage = _storage(request)
    file_path = None
    try:
        if not file.filename:
            raise HTTPException(400, "No file uploaded")

        # Enforce file size limit (streaming, never loads the whole file into RAM)
        max_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
        size = 0
        while True:
            chunk = await file.read(CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if size > max_bytes:
                raise HTTPException(413, f"File too large. Max size: {settings.MAX_UPLOAD_SIZE_MB}MB")
        await file.seek(0)

        file_path = await run_in_threadpool(
            storage.save_upload, file.file, sanitize_filename(file.filename), owner_id
        )
        record = FileRecord(
            file_name=os.path.basename(file.filename),
            file_path=file_path,
            mime_type=file.content_type,
            size=size,
            owner_id=owner_id,
        )
        await run_in_threadpool(_repository(request).save, record)
        logger.info(f"File saved to DB: {record.file_name} ({record.id})")

    except HTTPException:
        raise
    except DatabaseUnavailableError:
        if file_path:
            await run_in_threadpool(storage.delete, file_path)
        raise
    except Exception as e:
        logger.error(f"Upload failed: {e}", exc_info=True)
        if file_path:
            await run_in_threadpool(storage.delete, file_path)
        raise HTTPException(status_code=500, detail="File upload failed")

    queued = await run_in_threadpool(request.app.state.enqueuer.enqueue, record)
    message = (
        "File uploaded and queued for AI tagging" if queued
        else "File uploaded; AI tagging is delayed"
    )
    return UploadResponse(message=message, queued=queued, file=FileOut(**record.to_dict()))

@router.get("", response_model=List[FileOut])
@limiter.limit(READ_LIMIT)
async def list_files(request: Request, owner_id: str = Depends(get_owner_id)):
    records = await run_in_threadpool(_repository(request).list_by_owner, owner_id)
    return [FileOut(**r.to_dict()) for r in records]

@router.get("/{file_id}", response_model=FileOut)
@limiter.limit(READ_LIMIT)
async def get_file(request: Request, file_id: str, owner_id: str = Depends(get_owner_id)):
    record = await _get_owned_file(request, file_id, owner_id)
    return FileOut(**record.to_dict())

@router.get("/{file_id}/tags", response_model=TagsResponse)
@limiter.limit(READ_LIMIT)
async def get_file_tags(request: Request, file_id: str, owner_id: str = Depends(get_owner_id)):
    """
    Polling endpoint for tagging progress. Reads the result store, not the cache.
    """
    record = await _get_owned_file(request, file_id, owner_id)
    return TagsResponse(
        file_id=record.id,
        status="tagged" if record.is_tagged else "pending",
        ai_tags=record.ai_tags,
    )

@router.get("/{file_id}/download")
@limiter.limit(READ_LIMIT)
async def download_file(request: Request, file_id: str, owner_id: str = Depends(get_owner_id)):
    record = await _get_owned_file(request, file_id, owner_id)
    storage = _storage(request)
    if not storage.exists(record.file_path):
        raise HTTPException(status_code=404, detail="Physical file not found")
    return FileResponse(
        storage.get_absolute_path(record.file_path),
        filename=record.file_name,
        media_type=record.mime_type,
    )

@router.patch("/{file_id}/rename", response_model=RenameResponse)
@limiter.limit(WRITE_LIMIT)
async def rename_file(
    request: Request,
    file_id: str,
    body: RenameRequest,
    owner_id: str = Depends(get_owner_id),
):
    """Changes the display name only; stored bytes keep their path."""
    new_name = body.new_name.strip()
    if not new_name:
        raise HTTPException(status_code=400, detail="New name is required")

    record = await _get_owned_file(request, file_id, owner_id)
    record.file_name = new_name
    await run_in_threadpool(_repository(request).save, record)
    logger.info(f"File renamed: {record.id} → {new_name}")
    return RenameResponse(message="File renamed successfully", file=FileOut(**record.to_dict()))

@router.delete("/{file_id}", response_model=DeleteResponse)
@limiter.limit(WRITE_LIMIT)
async def delete_file(request: Request, file_id: str, owner_id: str = Depends(get_owner_id)):
    record = await _get_owned_file(request, file_id, owner_id)
    await run_in_threadpool(_storage(request).delete, record.file_path)
    await run_in_threadpool(_repository(request).delete, record.id)
    logger.info(f"File deleted: {record.file_name} ({record.id})")
    return DeleteResponse(success=True, message="File deleted successfully")

@router.post("/{file_id}/share", response_model=ShareResponse)
@limiter.limit(WRITE_LIMIT)
async def share_file(request: Request, file_id: str, owner_id: str = Depends(get_owner_id)):
    record = await _get_owned_file(request, file_id, owner_id)
    try:
        public_path = _storage(request).public_path(record.file_path)
    except ValueError:
        logger.warning(f"File {record.id} is stored outside the upload root: {record.file_path}")
        raise HTTPException(status_code=404, detail="File is not available for sharing")

    base_url = (settings.PUBLIC_BASE_URL or str(request.base_url)).rstrip("/")
    return ShareResponse(success=True, share_url=f"{base_url}{public_path}")
