# Notes Vault: Blob API Routes
#
# Raw attachment bytes, addressed by SHA-256. The note subsystem uploads
# bytes here, stores the returned hash on its attachment record, and reads
# the bytes back by hash.
#
# Endpoints:
#   POST   /api/blobs               - Store the request body, return its hash
#   GET    /api/blobs/{hash}        - Raw bytes
#   GET    /api/blobs/{hash}/exists - Existence check
#   DELETE /api/blobs/{hash}        - Remove a blob no attachment references

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response

from ..core.audit_log import EventType, audit
from ..exceptions import BlobNotFound
from ..services import get_services
from ..storage.blob_store import BlobStore, compute_hash, is_valid_hash
from .security import require_session

router = APIRouter(
    prefix="/api/blobs",
    tags=["blobs"],
    dependencies=[Depends(require_session)],
)

MAX_BLOB_SIZE = 100 * 1024 * 1024  # 100 MB


def _check_hash(blob_hash: str) -> None:
    if not is_valid_hash(blob_hash):
        raise HTTPException(400, "Invalid blob hash")


def _write_new(store: BlobStore, data: bytes):
    """Write ``data``; returns (hash, whether it was not stored before)."""
    is_new = not store.exists(compute_hash(data))
    return store.write(data), is_new


def _delete_existing(store: BlobStore, blob_hash: str) -> bool:
    existed = store.exists(blob_hash)
    store.delete(blob_hash)
    return existed


@router.post("", status_code=201)
async def write_blob(request: Request):
    """Store the raw request body; identical content returns the same hash."""
    data = await request.body()
    if len(data) > MAX_BLOB_SIZE:
        raise HTTPException(413, f"Blob too large: {len(data)} bytes (max {MAX_BLOB_SIZE})")
    blob_hash, is_new = await asyncio.to_thread(_write_new, get_services().blob_store, data)
    if is_new:
        audit(EventType.BLOB_WRITTEN, f"Blob stored: {blob_hash}",
              {"hash": blob_hash, "size": len(data)})
    return {"hash": blob_hash, "size": len(data)}


@router.get("/{blob_hash}")
async def read_blob(blob_hash: str):
    _check_hash(blob_hash)
    try:
        data = await asyncio.to_thread(get_services().blob_store.read, blob_hash)
    except BlobNotFound as e:
        raise HTTPException(404, e.user_message)
    return Response(content=data, media_type="application/octet-stream")


@router.get("/{blob_hash}/exists")
async def blob_exists(blob_hash: str):
    _check_hash(blob_hash)
    exists = await asyncio.to_thread(get_services().blob_store.exists, blob_hash)
    return {"hash": blob_hash, "exists": exists}


@router.delete("/{blob_hash}")
async def delete_blob(blob_hash: str):
    """Remove a blob. The caller must already have dropped every reference."""
    _check_hash(blob_hash)
    existed = await asyncio.to_thread(_delete_existing, get_services().blob_store, blob_hash)
    if existed:
        audit(EventType.BLOB_DELETED, f"Blob deleted: {blob_hash}", {"hash": blob_hash})
    return {"hash": blob_hash, "deleted": existed}
