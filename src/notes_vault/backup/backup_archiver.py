"""Backup archiver: package the live dataset into one encrypted artifact.

Each backup is a single ``backup_<timestamp>.enc`` file containing:
  - db.sqlite, hot-copied via sqlite3.backup()
  - every blob under blobs/<h[0:2]>/<h[2:4]>/<h>
  - manifest.json with SHA-256 + size of each file above

The archive is a ZIP (deflated) encrypted as a single buffer with
AES-256-GCM. The encrypted file becomes visible through an atomic rename
and is registered in the backup history only after it is fully on disk.
"""

import io
import logging
import os
import shutil
import sqlite3
import tempfile
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Type

from ..config import DB_FILENAME
from ..exceptions import EmptyDatasetRejected, StorageIOError
from ..storage.blob_store import BlobStore
from .backup_crypto import BackupCrypto
from .backup_database import BackupDatabase, BackupRecord
from .manifest import MANIFEST_NAME, ManifestBuilder, manifest_hash

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "backup_"
BACKUP_SUFFIX = ".enc"
_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"


class BackupArchiver:
    """Produces one self-contained encrypted backup artifact per call.

    Args:
        data_dir: Directory holding db.sqlite and blobs/.
        backup_dir: Directory receiving backup_<timestamp>.enc files.
        blob_store: Store whose objects are included.
        backup_db: Backup history table.
        crypto: Encryption engine (class with encrypt_bytes).
    """

    def __init__(
        self,
        data_dir: Path,
        backup_dir: Path,
        blob_store: BlobStore,
        backup_db: BackupDatabase,
        crypto: Type[BackupCrypto] = BackupCrypto,
        manifest_builder: Optional[ManifestBuilder] = None,
    ):
        self._data_dir = Path(data_dir)
        self._backup_dir = Path(backup_dir)
        self._blob_store = blob_store
        self._db = backup_db
        self._crypto = crypto
        self._manifest_builder = manifest_builder or ManifestBuilder()

    # ── Create ───────────────────────────────────────────────────────

    def create_backup(self, password: str) -> BackupRecord:
        """Create an encrypted backup of the live dataset.

        Raises:
            EmptyDatasetRejected: No database file and no blobs exist.
            StorageIOError: Any filesystem failure; nothing is registered and
                no partial artifact is left behind.
        """
        db_path = self._data_dir / DB_FILENAME
        if not db_path.is_file() and not self._blob_store.list_all():
            raise EmptyDatasetRejected("No database or attachments to back up.")

        try:
            self._backup_dir.mkdir(parents=True, exist_ok=True)
            snapshot_dir = Path(tempfile.mkdtemp(prefix=".snapshot-", dir=self._backup_dir))
        except OSError as e:
            raise StorageIOError.from_os_error(e, "Could not prepare backup directory")

        try:
            return self._create_backup(password, db_path, snapshot_dir)
        except OSError as e:
            raise StorageIOError.from_os_error(e, "Backup failed")
        finally:
            shutil.rmtree(snapshot_dir, ignore_errors=True)

    def _create_backup(self, password: str, db_path: Path, snapshot_dir: Path) -> BackupRecord:
        created = datetime.now(timezone.utc)
        created_at = created.isoformat()

        # 1. Consistent copy of the live database
        snapshot_db: Optional[Path] = None
        if db_path.is_file():
            snapshot_db = snapshot_dir / DB_FILENAME
            self._hot_copy_db(db_path, snapshot_db)

        # 2. Manifest of what is being archived
        manifest = self._manifest_builder.build(
            self._data_dir, created_at=created_at, database_snapshot=snapshot_db
        )
        manifest_raw = manifest.to_json()
        checksum = manifest_hash(manifest_raw)

        # 3. ZIP in memory: database, blobs (shard layout kept), manifest
        zip_buf = io.BytesIO()
        with zipfile.ZipFile(zip_buf, "w", zipfile.ZIP_DEFLATED) as zf:
            for entry in manifest.entries:
                if entry.relative_path == DB_FILENAME:
                    source = snapshot_db
                else:
                    source = self._data_dir / entry.relative_path
                zf.write(source, entry.relative_path)
            zf.writestr(MANIFEST_NAME, manifest_raw)

        # 4. Encrypt
        encrypted = self._crypto.encrypt_bytes(zip_buf.getvalue(), password)

        # 5. Write archive atomically
        archive_path = self._archive_path(created)
        self._write_atomic(archive_path, encrypted)

        # 6. Register
        try:
            record = self._db.record_backup(
                path=str(archive_path),
                created_at=created_at,
                size_bytes=len(encrypted),
                manifest_hash=checksum,
            )
        except sqlite3.Error as e:
            archive_path.unlink(missing_ok=True)
            raise StorageIOError(f"Could not record backup: {e}")

        logger.info(
            "Backup created: %s (%d files, %d bytes)",
            archive_path, len(manifest.entries), len(encrypted),
        )
        return record

    # ── Helpers ──────────────────────────────────────────────────────

    def _archive_path(self, created: datetime) -> Path:
        stamp = created.strftime(_TIMESTAMP_FORMAT)
        path = self._backup_dir / f"{BACKUP_PREFIX}{stamp}{BACKUP_SUFFIX}"
        counter = 1
        while path.exists():
            path = self._backup_dir / f"{BACKUP_PREFIX}{stamp}_{counter}{BACKUP_SUFFIX}"
            counter += 1
        return path

    @staticmethod
    def _write_atomic(path: Path, data: bytes) -> None:
        """Write via temp file + rename; the partial temp file is removed on failure."""
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}-", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    @staticmethod
    def _hot_copy_db(src: Path, dst: Path):
        """Atomic hot copy of a SQLite database using the backup API."""
        src_conn = None
        dst_conn = None
        try:
            src_conn = sqlite3.connect(str(src))
            dst_conn = sqlite3.connect(str(dst))
            src_conn.backup(dst_conn)
        except sqlite3.Error as e:
            raise StorageIOError(f"Could not snapshot database: {e}")
        finally:
            if dst_conn:
                dst_conn.close()
            if src_conn:
                src_conn.close()
