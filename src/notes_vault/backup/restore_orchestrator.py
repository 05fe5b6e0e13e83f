"""Restore orchestrator: replace the live dataset with a backup's contents.

State machine:

    IDLE -> DECRYPTING -> EXTRACTING -> VERIFYING -> SWAPPING -> COMPLETE

Nothing under the data directory's live paths is touched before SWAPPING.
During the swap the live db.sqlite is only renamed aside to
``db.sqlite.previous-<timestamp>``, never deleted, so the live dataset is
always one rename away from its last-known-good state. Previous files are
purged later by ``purge_previous`` once their grace period has passed.
"""

import io
import logging
import os
import shutil
import tempfile
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import List, Optional, Type

from ..config import DB_FILENAME, STAGING_DIRNAME
from ..core.db import DatabasePool
from ..exceptions import BackupNotFound, ChecksumMismatch, StorageIOError
from ..storage.blob_store import BlobStore
from .backup_crypto import BackupCrypto
from .manifest import MANIFEST_NAME, Manifest, dataset_files, manifest_hash, verify_tree

logger = logging.getLogger(__name__)

PREVIOUS_MARKER = ".previous-"
_PREVIOUS_STAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"
_SIDECAR_SUFFIXES = ("-wal", "-shm")


class RestoreState(str, Enum):
    IDLE = "idle"
    DECRYPTING = "decrypting"
    EXTRACTING = "extracting"
    VERIFYING = "verifying"
    SWAPPING = "swapping"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class RestoreResult:
    backup_path: str
    restored_files: int
    restored_blobs: int
    previous_db_path: Optional[str]
    restart_required: bool = True
    manifest_created_at: str = ""
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "backup_path": self.backup_path,
            "restored_files": self.restored_files,
            "restored_blobs": self.restored_blobs,
            "previous_db_path": self.previous_db_path,
            "restart_required": self.restart_required,
            "manifest_created_at": self.manifest_created_at,
            "warnings": list(self.warnings),
        }


class RestoreOrchestrator:
    """Decrypt, extract, verify and atomically swap in one backup.

    Args:
        data_dir: Live data directory (db.sqlite, blobs/).
        blob_store: Live blob store; staged blobs are merged through it.
        pool: Live database pool. Closed before the swap and reopened
            afterwards; nothing else may close or reopen it meanwhile.
        crypto: Decryption engine (class with decrypt_bytes).
        staging_root: Parent of per-restore staging directories; must be on
            the same filesystem as ``data_dir`` (default: data_dir/.restore-staging).
    """

    def __init__(
        self,
        data_dir: Path,
        blob_store: BlobStore,
        pool: Optional[DatabasePool] = None,
        crypto: Type[BackupCrypto] = BackupCrypto,
        staging_root: Optional[Path] = None,
    ):
        self._data_dir = Path(data_dir)
        self._staging_root = Path(staging_root) if staging_root else self._data_dir / STAGING_DIRNAME
        self._blob_store = blob_store
        self._pool = pool
        self._crypto = crypto
        self.state = RestoreState.IDLE

    @property
    def live_db_path(self) -> Path:
        return self._data_dir / DB_FILENAME

    # ── Restore ──────────────────────────────────────────────────────

    def restore(
        self,
        path: Path,
        password: str,
        expected_manifest_hash: Optional[str] = None,
    ) -> RestoreResult:
        """Restore the dataset from the backup at ``path``.

        Args:
            path: Encrypted backup artifact.
            password: Backup password.
            expected_manifest_hash: Hash recorded in the backup history; when
                given, the embedded manifest must hash to it.

        Raises:
            BackupNotFound: ``path`` does not exist.
            AuthenticationFailed: Wrong password or tampered artifact.
            ChecksumMismatch: Extracted files disagree with the manifest.
            FormatVersionUnsupported: Manifest from an incompatible version.
            StorageIOError: Filesystem failure (live data left or put back
                as it was).
        """
        path = Path(path)
        staging: Optional[Path] = None
        try:
            self.state = RestoreState.DECRYPTING
            zip_bytes = self._decrypt(path, password)

            self.state = RestoreState.EXTRACTING
            staging = self._new_staging_dir()
            manifest_raw = self._extract(zip_bytes, staging)

            self.state = RestoreState.VERIFYING
            manifest = self._verify(staging, manifest_raw, expected_manifest_hash)

            self.state = RestoreState.SWAPPING
            previous, blob_count = self._swap(staging)

            self.state = RestoreState.COMPLETE
        except OSError as e:
            self.state = RestoreState.FAILED
            raise StorageIOError.from_os_error(e, "Restore failed")
        except BaseException:
            self.state = RestoreState.FAILED
            raise
        finally:
            if staging is not None:
                shutil.rmtree(staging, ignore_errors=True)

        logger.info("Restore complete from %s; application restart required", path)
        return RestoreResult(
            backup_path=str(path),
            restored_files=len(manifest.entries),
            restored_blobs=blob_count,
            previous_db_path=str(previous) if previous else None,
            manifest_created_at=manifest.created_at,
        )

    def read_manifest(
        self,
        path: Path,
        password: str,
        expected_manifest_hash: Optional[str] = None,
    ) -> Manifest:
        """Decrypt ``path`` and return its embedded manifest.

        Nothing is extracted and the live dataset is not touched.

        Raises:
            BackupNotFound / AuthenticationFailed / ChecksumMismatch /
            FormatVersionUnsupported: As for ``restore``.
        """
        zip_bytes = self._decrypt(Path(path), password)
        try:
            with zipfile.ZipFile(io.BytesIO(zip_bytes), "r") as zf:
                manifest_raw = zf.read(MANIFEST_NAME)
        except KeyError:
            raise ChecksumMismatch("Corrupt archive: missing manifest.")
        except zipfile.BadZipFile as e:
            raise ChecksumMismatch(f"Corrupt archive: {e}")
        if expected_manifest_hash and manifest_hash(manifest_raw) != expected_manifest_hash:
            raise ChecksumMismatch("Manifest does not match the recorded backup.")
        return Manifest.from_json(manifest_raw)

    # ── Phases ───────────────────────────────────────────────────────

    def _decrypt(self, path: Path, password: str) -> bytes:
        try:
            encrypted = path.read_bytes()
        except FileNotFoundError:
            raise BackupNotFound(f"Backup file not found: {path}")
        return self._crypto.decrypt_bytes(encrypted, password)

    def _new_staging_dir(self) -> Path:
        # Staging lives on the same filesystem as the live data so the
        # database swap is a rename, not a copy.
        self._staging_root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix="restore-", dir=self._staging_root))

    def _extract(self, zip_bytes: bytes, staging: Path) -> bytes:
        """Unpack the archive into ``staging``; returns the raw manifest."""
        try:
            with zipfile.ZipFile(io.BytesIO(zip_bytes), "r") as zf:
                try:
                    manifest_raw = zf.read(MANIFEST_NAME)
                except KeyError:
                    raise ChecksumMismatch("Corrupt archive: missing manifest.")
                for info in zf.infolist():
                    if info.is_dir() or info.filename == MANIFEST_NAME:
                        continue
                    target = staging / self._safe_member_path(info.filename)
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with zf.open(info) as src, open(target, "wb") as dst:
                        shutil.copyfileobj(src, dst)
        except zipfile.BadZipFile as e:
            raise ChecksumMismatch(f"Corrupt archive: {e}")
        return manifest_raw

    @staticmethod
    def _safe_member_path(name: str) -> PurePosixPath:
        member = PurePosixPath(name)
        if member.is_absolute() or ".." in member.parts or not member.parts:
            raise ChecksumMismatch(f"Unsafe path in archive: {name}")
        return member

    @staticmethod
    def _verify(staging: Path, manifest_raw: bytes,
                expected_manifest_hash: Optional[str]) -> Manifest:
        if expected_manifest_hash and manifest_hash(manifest_raw) != expected_manifest_hash:
            raise ChecksumMismatch("Manifest does not match the recorded backup.")
        manifest = Manifest.from_json(manifest_raw)
        verify_tree(staging, manifest)
        return manifest

    def _swap(self, staging: Path):
        """Move the verified staging tree into the live position.

        Returns:
            (previous_db_path or None, number of blobs merged)
        """
        staged_db = staging / DB_FILENAME
        live_db = self.live_db_path
        previous: Optional[Path] = None
        db_swapped = False

        if self._pool is not None:
            self._pool.close()
        try:
            if staged_db.is_file():
                if live_db.exists():
                    previous = self._rename_aside(live_db)
                os.replace(staged_db, live_db)
                db_swapped = True

            # Blobs are immutable and content-addressed: merging through the
            # store's atomic write tolerates any overlap with live blobs.
            blob_count = 0
            for blob_path in dataset_files(staging):
                if blob_path.name == DB_FILENAME:
                    continue
                self._blob_store.write(blob_path.read_bytes())
                blob_count += 1
        except BaseException:
            self._roll_back(live_db, previous, db_swapped)
            raise
        finally:
            if self._pool is not None:
                self._pool.reopen()
        return previous, blob_count

    @staticmethod
    def _rename_aside(live_db: Path) -> Path:
        stamp = datetime.now(timezone.utc).strftime(_PREVIOUS_STAMP_FORMAT)
        previous = live_db.with_name(f"{live_db.name}{PREVIOUS_MARKER}{stamp}")
        moved = []
        try:
            os.replace(live_db, previous)
            moved.append((live_db, previous))
            # A stale WAL paired with a different main file would corrupt it.
            for suffix in _SIDECAR_SUFFIXES:
                sidecar = live_db.with_name(live_db.name + suffix)
                if sidecar.exists():
                    target = previous.with_name(previous.name + suffix)
                    os.replace(sidecar, target)
                    moved.append((sidecar, target))
        except OSError:
            # The caller only learns about ``previous`` on success, so put
            # back whatever already moved before propagating.
            for source, target in reversed(moved):
                os.replace(target, source)
            raise
        logger.info("Live database moved aside to %s", previous)
        return previous

    @staticmethod
    def _roll_back(live_db: Path, previous: Optional[Path], db_swapped: bool) -> None:
        if previous is None:
            # There was no live database before; drop the half-applied one.
            if db_swapped:
                live_db.unlink(missing_ok=True)
            return
        try:
            os.replace(previous, live_db)
            for suffix in _SIDECAR_SUFFIXES:
                sidecar = previous.with_name(previous.name + suffix)
                if sidecar.exists():
                    os.replace(sidecar, live_db.with_name(live_db.name + suffix))
            logger.warning("Restore swap failed; previous database put back at %s", live_db)
        except OSError:
            logger.critical(
                "Restore swap failed and automatic rollback failed; "
                "previous database kept at %s (db swapped: %s)",
                previous, db_swapped, exc_info=True,
            )

    # ── Previous-file housekeeping ───────────────────────────────────

    def list_previous(self) -> List[Path]:
        """Pre-restore database files still kept as a safety net."""
        prefix = f"{DB_FILENAME}{PREVIOUS_MARKER}"
        return sorted(
            p for p in self._data_dir.glob(f"{prefix}*")
            if not p.name.endswith(_SIDECAR_SUFFIXES)
        )

    def purge_previous(self, grace_period: timedelta,
                       now: Optional[datetime] = None) -> List[Path]:
        """Delete previous database files older than ``grace_period``.

        Meant to run at startup, never during a restore.

        Returns:
            Paths that were removed.
        """
        now = now or datetime.now(timezone.utc)
        prefix = f"{DB_FILENAME}{PREVIOUS_MARKER}"
        removed = []
        for previous in self.list_previous():
            stamp = previous.name[len(prefix):]
            try:
                renamed_at = datetime.strptime(stamp, _PREVIOUS_STAMP_FORMAT).replace(
                    tzinfo=timezone.utc
                )
            except ValueError:
                logger.warning("Skipping unrecognized previous file: %s", previous)
                continue
            if now - renamed_at < grace_period:
                continue
            for candidate in [previous] + [
                previous.with_name(previous.name + s) for s in _SIDECAR_SUFFIXES
            ]:
                candidate.unlink(missing_ok=True)
            removed.append(previous)
            logger.info("Purged previous database: %s", previous)
        return removed
