"""Backup manager: create, list, restore and delete encrypted backups.

This is the surface the rest of the application calls. It wires the
archiver, restore orchestrator and retention manager to one data directory
and enforces mutual exclusion: backup creation and restore never overlap,
and a second attempt fails fast with OperationInProgress instead of
queueing. Everything here blocks; async callers use the ``a*`` wrappers,
which run the work on a worker thread.
"""

import asyncio
import logging
import threading
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from typing import Iterator, List, Optional, Type, Union

from ..config import VaultSettings
from ..core.audit_log import EventSeverity, EventType, audit
from ..core.db import DatabasePool
from ..exceptions import BackupNotFound, OperationInProgress, StorageIOError, VaultError
from ..storage.blob_store import BlobStore
from .backup_archiver import BackupArchiver
from .backup_crypto import BackupCrypto
from .backup_database import BackupDatabase, BackupRecord
from .credentials import CredentialStore
from .manifest import Manifest
from .restore_orchestrator import RestoreOrchestrator, RestoreResult
from .retention import RetentionManager, RetentionReport

logger = logging.getLogger(__name__)

# One lock for the whole subsystem, shared by every manager in the process.
_OPERATION_LOCK = threading.Lock()


class BackupManager:
    """Orchestrates backup creation, listing, restoration, and deletion.

    Args:
        settings: Resolved paths and policy.
        blob_store: Live blob store (default: one rooted at settings.blob_dir).
        pool: Live database pool, handed to the restore orchestrator.
        backup_db: BackupDatabase instance.  Created automatically if None.
        crypto: Encryption engine class.
        lock: Mutual-exclusion lock (default: the process-wide lock).
        credentials: Store for the auto-backup password (default: OS keyring).
    """

    def __init__(
        self,
        settings: VaultSettings,
        blob_store: Optional[BlobStore] = None,
        pool: Optional[DatabasePool] = None,
        backup_db: Optional[BackupDatabase] = None,
        crypto: Type[BackupCrypto] = BackupCrypto,
        lock: Optional[threading.Lock] = None,
        credentials: Optional[CredentialStore] = None,
    ):
        self._settings = settings
        self._backup_dir = Path(settings.backup_dir)
        self._backup_dir.mkdir(parents=True, exist_ok=True)

        self._blob_store = blob_store or BlobStore(settings.blob_dir)
        self._pool = pool
        self._db = backup_db or BackupDatabase(settings.backup_history_path)
        self._lock = lock or _OPERATION_LOCK
        self._credentials = credentials or CredentialStore()

        self._archiver = BackupArchiver(
            data_dir=settings.data_dir,
            backup_dir=self._backup_dir,
            blob_store=self._blob_store,
            backup_db=self._db,
            crypto=crypto,
        )
        self._orchestrator = RestoreOrchestrator(
            data_dir=settings.data_dir,
            blob_store=self._blob_store,
            pool=pool,
            crypto=crypto,
            staging_root=settings.staging_dir,
        )
        self._retention = RetentionManager(self._db)

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    @property
    def credentials(self) -> CredentialStore:
        return self._credentials

    @property
    def restore_state(self):
        return self._orchestrator.state

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise OperationInProgress("A backup or restore is already running.")
        try:
            yield
        finally:
            self._lock.release()

    # ── Create ───────────────────────────────────────────────────────

    def create_backup(self, password: Optional[str] = None) -> BackupRecord:
        """Create an encrypted backup, then apply the retention policy.

        Args:
            password: Backup password. When None, the stored auto-backup
                password is used.

        Raises:
            ValueError: Password shorter than the configured minimum.
            CredentialUnavailable: No password given and none stored.
            OperationInProgress: Another backup or restore is running.
            EmptyDatasetRejected / StorageIOError: From the archiver.
        """
        if password is None:
            password = self._credentials.get_auto_backup_password()
        if len(password) < self._settings.min_password_length:
            raise ValueError(
                f"Password must be at least {self._settings.min_password_length} characters."
            )

        with self._exclusive():
            try:
                record = self._archiver.create_backup(password)
            except VaultError as e:
                audit(EventType.BACKUP_FAILED, f"Backup failed: {e}",
                      {"error": type(e).__name__}, EventSeverity.WARNING)
                raise

        audit(EventType.BACKUP_CREATED, f"Backup created: {record.id}", {
            "backup_id": record.id,
            "path": record.filesystem_path,
            "size_bytes": record.size_bytes,
        })

        try:
            self.enforce_retention()
        except Exception:
            logger.warning("Retention pass after backup failed", exc_info=True)
        return record

    # ── Auto-backup password ─────────────────────────────────────────

    def set_auto_backup_password(self, password: str) -> None:
        """Store the password used by scheduled and password-less backups."""
        if len(password) < self._settings.min_password_length:
            raise ValueError(
                f"Password must be at least {self._settings.min_password_length} characters."
            )
        self._credentials.store_auto_backup_password(password)

    def clear_auto_backup_password(self) -> bool:
        return self._credentials.delete_auto_backup_password()

    # ── List / Info ──────────────────────────────────────────────────

    def list_backups(self) -> List[BackupRecord]:
        """Return all backup records, newest first."""
        return self._db.list_backups()

    def get_backup_info(self, backup_id: str) -> Optional[BackupRecord]:
        """Return a single backup record or None."""
        return self._db.get_backup(backup_id)

    def get_backup_manifest(self, backup_id: str, password: str) -> Manifest:
        """Decrypt a backup and return the manifest it carries.

        Raises:
            BackupNotFound: No such record, or its file is gone.
            AuthenticationFailed / ChecksumMismatch / FormatVersionUnsupported
        """
        record = self._db.get_backup(backup_id)
        if record is None:
            raise BackupNotFound(f"Backup not found: {backup_id}")
        return self._orchestrator.read_manifest(
            Path(record.filesystem_path), password, record.manifest_hash
        )

    # ── Delete ───────────────────────────────────────────────────────

    def delete_backup(self, backup_id: str, path: Union[str, Path]) -> None:
        """Delete a backup archive and its record.

        Raises:
            BackupNotFound: No such record, or ``path`` is not that record's file.
            StorageIOError: The file could not be removed; the record is kept.
        """
        record = self._db.get_backup(backup_id)
        if record is None:
            raise BackupNotFound(f"Backup not found: {backup_id}")
        if Path(record.filesystem_path).resolve() != self._resolve_in_backup_dir(path):
            raise BackupNotFound(f"Backup {backup_id} does not match {path}")

        try:
            Path(record.filesystem_path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not delete backup file %s: %s", record.filesystem_path, e)
            raise StorageIOError.from_os_error(e, "Could not delete backup")
        self._db.delete_backup_record(backup_id)

        audit(EventType.BACKUP_DELETED, f"Backup deleted: {backup_id}", {
            "backup_id": backup_id,
        })

    # ── Restore ──────────────────────────────────────────────────────

    def restore_backup(self, path: Union[str, Path], password: str) -> RestoreResult:
        """Replace the live dataset with the backup at ``path``.

        The application must restart afterwards. A failed restore leaves the
        live dataset exactly as it was.

        Raises:
            BackupNotFound: ``path`` is missing or outside the backup directory.
            OperationInProgress: Another backup or restore is running.
            AuthenticationFailed / ChecksumMismatch / FormatVersionUnsupported /
            StorageIOError: From the orchestrator.
        """
        archive = self._resolve_in_backup_dir(path)
        if not archive.is_file():
            raise BackupNotFound(f"Backup archive file missing: {archive}")
        record = self._db.find_by_path(archive)
        expected_hash = record.manifest_hash if record else None

        with self._exclusive():
            try:
                result = self._orchestrator.restore(archive, password, expected_hash)
            except VaultError as e:
                audit(EventType.BACKUP_RESTORE_FAILED, f"Restore failed: {e}",
                      {"path": str(archive), "error": type(e).__name__},
                      EventSeverity.WARNING)
                raise

        audit(EventType.BACKUP_RESTORED, f"Backup restored: {archive.name}", {
            "path": str(archive),
            "restored_files": result.restored_files,
            "previous_db_path": result.previous_db_path,
        })
        return result

    # ── Housekeeping ─────────────────────────────────────────────────

    def enforce_retention(self, max_count: Optional[int] = None) -> RetentionReport:
        count = self._settings.retention_count if max_count is None else max_count
        report = self._retention.enforce_retention(count)
        if report.deleted or report.retry_later:
            audit(EventType.BACKUP_PRUNED, f"Retention removed {len(report.deleted)} backups",
                  report.to_dict())
        return report

    def reconcile_orphans(self) -> List[str]:
        removed = self._retention.reconcile_orphans()
        if removed:
            audit(EventType.BACKUP_RECONCILED,
                  f"Removed {len(removed)} records for missing backup files",
                  {"backup_ids": removed})
        return removed

    def purge_previous(self) -> List[Path]:
        """Delete pre-restore databases older than the grace period."""
        grace = timedelta(hours=self._settings.previous_grace_hours)
        return self._orchestrator.purge_previous(grace)

    # ── Async wrappers ───────────────────────────────────────────────

    async def acreate_backup(self, password: Optional[str] = None) -> BackupRecord:
        return await asyncio.to_thread(self.create_backup, password)

    async def arestore_backup(self, path: Union[str, Path], password: str) -> RestoreResult:
        return await asyncio.to_thread(self.restore_backup, path, password)

    async def adelete_backup(self, backup_id: str, path: Union[str, Path]) -> None:
        await asyncio.to_thread(self.delete_backup, backup_id, path)

    async def aenforce_retention(self, max_count: Optional[int] = None) -> RetentionReport:
        return await asyncio.to_thread(self.enforce_retention, max_count)

    async def alist_backups(self) -> List[BackupRecord]:
        return await asyncio.to_thread(self.list_backups)

    async def aget_backup_info(self, backup_id: str) -> Optional[BackupRecord]:
        return await asyncio.to_thread(self.get_backup_info, backup_id)

    async def aget_backup_manifest(self, backup_id: str, password: str) -> Manifest:
        return await asyncio.to_thread(self.get_backup_manifest, backup_id, password)

    async def areconcile_orphans(self) -> List[str]:
        return await asyncio.to_thread(self.reconcile_orphans)

    # ── Helpers ──────────────────────────────────────────────────────

    def _resolve_in_backup_dir(self, path: Union[str, Path]) -> Path:
        """Resolve ``path``; anything outside the backup directory is rejected."""
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self._backup_dir / candidate
        resolved = candidate.resolve()
        if not resolved.is_relative_to(self._backup_dir.resolve()):
            logger.warning("Rejected backup path outside %s: %s", self._backup_dir, path)
            raise BackupNotFound("Backup path must be inside the backups directory.")
        return resolved
