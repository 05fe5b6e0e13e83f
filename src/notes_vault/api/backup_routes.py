"""Backup API routes: create, list, restore and delete encrypted backups.

Also covers the automatic-backup schedule and the stored auto-backup
password. All blocking work runs on a worker thread. Failures map to
specific HTTP statuses with a user-facing message; a response never implies
success for a failed backup or restore.
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..backup.scheduler import BackupFrequency
from ..exceptions import (
    AuthenticationFailed,
    BackupNotFound,
    ChecksumMismatch,
    CredentialUnavailable,
    EmptyDatasetRejected,
    FormatVersionUnsupported,
    OperationInProgress,
    StorageIOError,
    VaultError,
)
from ..services import get_services
from .security import require_session

router = APIRouter(
    prefix="/api/backups",
    tags=["backups"],
    dependencies=[Depends(require_session)],
)


# ── Pydantic Models ──────────────────────────────────────────────────


class CreateBackupRequest(BaseModel):
    # None: use the stored auto-backup password
    password: Optional[str] = Field(None, min_length=1)


class RestoreBackupRequest(BaseModel):
    path: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class PasswordRequest(BaseModel):
    password: str = Field(..., min_length=1)


class RetentionRequest(BaseModel):
    max_count: Optional[int] = Field(None, ge=0)


class ScheduleRequest(BaseModel):
    frequency: str = Field(..., min_length=1, examples=["daily", "6h", "30m"])
    enabled: bool = True


# ── Error mapping ────────────────────────────────────────────────────

_STATUS_BY_ERROR = [
    (AuthenticationFailed, 400),
    (EmptyDatasetRejected, 400),
    (CredentialUnavailable, 400),
    (BackupNotFound, 404),
    (OperationInProgress, 409),
    (ChecksumMismatch, 422),
    (FormatVersionUnsupported, 422),
]


def _http_error(e: VaultError) -> HTTPException:
    if isinstance(e, StorageIOError):
        return HTTPException(status_code=507 if e.disk_full else 500, detail=e.user_message)
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(e, error_type):
            return HTTPException(status_code=status_code, detail=e.user_message)
    return HTTPException(status_code=500, detail=e.user_message)


# ── Backups ──────────────────────────────────────────────────────────


@router.post("")
async def create_backup(body: CreateBackupRequest):
    """Create an encrypted backup of the notes database and attachments."""
    mgr = get_services().backup_manager
    try:
        record = await mgr.acreate_backup(body.password)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except VaultError as e:
        raise _http_error(e)
    return record.to_dict()


@router.get("")
async def list_backups():
    """List all backup archives, newest first."""
    records = await get_services().backup_manager.alist_backups()
    backups = [r.to_dict() for r in records]
    return {"backups": backups, "total": len(backups)}


@router.post("/restore")
async def restore_backup(body: RestoreBackupRequest):
    """Restore the notes database and attachments from an encrypted backup.

    The application must be restarted afterwards (``restart_required``).
    """
    try:
        result = await get_services().backup_manager.arestore_backup(body.path, body.password)
    except VaultError as e:
        raise _http_error(e)
    return result.to_dict()


@router.post("/retention")
async def enforce_retention(body: RetentionRequest):
    """Delete backups beyond the retention limit."""
    report = await get_services().backup_manager.aenforce_retention(body.max_count)
    return report.to_dict()


@router.post("/reconcile")
async def reconcile_orphans():
    """Remove records whose backup file no longer exists."""
    removed = await get_services().backup_manager.areconcile_orphans()
    return {"removed": removed, "total": len(removed)}


# ── Schedule ─────────────────────────────────────────────────────────


@router.get("/schedule")
async def get_schedule():
    return await asyncio.to_thread(get_services().scheduler.status)


@router.put("/schedule")
async def set_schedule(body: ScheduleRequest):
    """Enable, change or disable automatic backups."""
    scheduler = get_services().scheduler
    try:
        frequency = BackupFrequency.parse(body.frequency)
        await asyncio.to_thread(scheduler.schedule_backup, frequency, body.enabled)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except VaultError as e:
        raise _http_error(e)
    return scheduler.status()


@router.delete("/schedule")
async def cancel_schedule():
    cancelled = await asyncio.to_thread(get_services().scheduler.cancel_backup)
    return {"cancelled": cancelled}


# ── Auto-backup password ─────────────────────────────────────────────


@router.get("/auto-password")
async def auto_password_status():
    """Whether an auto-backup password is stored. The password is never returned."""
    mgr = get_services().backup_manager
    stored = await asyncio.to_thread(mgr.credentials.has_auto_backup_password)
    return {"stored": stored}


@router.put("/auto-password")
async def set_auto_password(body: PasswordRequest):
    mgr = get_services().backup_manager
    try:
        await asyncio.to_thread(mgr.set_auto_backup_password, body.password)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except VaultError as e:
        raise _http_error(e)
    return {"stored": True}


@router.delete("/auto-password")
async def clear_auto_password():
    """Forget the stored password and stop automatic backups."""
    services = get_services()
    try:
        deleted = await asyncio.to_thread(services.backup_manager.clear_auto_backup_password)
    except VaultError as e:
        raise _http_error(e)
    await asyncio.to_thread(services.scheduler.cancel_backup)
    return {"deleted": deleted}


# ── Single backup ────────────────────────────────────────────────────


@router.get("/{backup_id}")
async def get_backup_info(backup_id: str):
    """Get the history record for a specific backup."""
    record = await get_services().backup_manager.aget_backup_info(backup_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Backup not found.")
    return record.to_dict()


@router.post("/{backup_id}/manifest")
async def get_backup_manifest(backup_id: str, body: PasswordRequest):
    """Decrypt a backup and describe its contents without restoring it."""
    try:
        manifest = await get_services().backup_manager.aget_backup_manifest(
            backup_id, body.password
        )
    except VaultError as e:
        raise _http_error(e)
    return manifest.summary()


@router.delete("/{backup_id}")
async def delete_backup(backup_id: str, path: str = Query(..., min_length=1)):
    """Delete a backup archive and its record."""
    try:
        await get_services().backup_manager.adelete_backup(backup_id, path)
    except VaultError as e:
        raise _http_error(e)
    return {"deleted": True}
