"""Backup history database: one row per encrypted backup artifact.

SQLite + WAL mode via core.db.connect(). The table lives next to the
backup files, not inside the live notes database, so swapping db.sqlite
during a restore never rewrites the list of backups.
"""

import logging
import sqlite3
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Union
from uuid import uuid4

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupRecord:
    id: str
    filesystem_path: str
    created_at: str
    size_bytes: int
    manifest_hash: str

    def to_dict(self) -> dict:
        return asdict(self)


class BackupDatabase:
    """SQLite persistence for backup metadata.

    Args:
        db_path: Path to SQLite database file.  Defaults to data/backups/backup_history.db.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = Path(db_path) if db_path else Path("data/backups/backup_history.db")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _connect(self, row_factory: bool = False):
        from ..core.db import connect as db_connect
        return db_connect(self.db_path, row_factory=row_factory)

    def _init_database(self):
        """Create the backups table if it does not exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS backups (
                    id              TEXT PRIMARY KEY,
                    path            TEXT NOT NULL,
                    created_at      TEXT NOT NULL,
                    size            INTEGER NOT NULL,
                    manifest_hash   TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_backups_created_at ON backups(created_at DESC)"
            )
            conn.commit()

    # ── CRUD ────────────────────────────────────────────────────────

    def record_backup(
        self,
        path: str,
        created_at: str,
        size_bytes: int,
        manifest_hash: str,
        backup_id: Optional[str] = None,
    ) -> BackupRecord:
        """Insert a new backup record and return it."""
        backup_id = backup_id or uuid4().hex
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO backups (id, path, created_at, size, manifest_hash)
                   VALUES (?, ?, ?, ?, ?)""",
                (backup_id, path, created_at, size_bytes, manifest_hash),
            )
            conn.commit()
        logger.debug("Recorded backup: %s", backup_id)
        return self.get_backup(backup_id)

    def list_backups(self) -> List[BackupRecord]:
        """Return backups sorted newest-first."""
        with self._connect(row_factory=True) as conn:
            rows = conn.execute(
                "SELECT * FROM backups ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def get_backup(self, backup_id: str) -> Optional[BackupRecord]:
        """Return a single backup record or None."""
        with self._connect(row_factory=True) as conn:
            row = conn.execute(
                "SELECT * FROM backups WHERE id = ?", (backup_id,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def find_by_path(self, path: Union[str, Path]) -> Optional[BackupRecord]:
        """Return the record whose file resolves to ``path``, or None."""
        target = Path(path).resolve()
        for record in self.list_backups():
            if Path(record.filesystem_path).resolve() == target:
                return record
        return None

    def delete_backup_record(self, backup_id: str) -> bool:
        """Delete record from DB.  Returns True if a row was removed."""
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM backups WHERE id = ?", (backup_id,)
            )
            conn.commit()
        return cursor.rowcount > 0

    def delete_backup_records(self, backup_ids: Iterable[str]) -> int:
        """Delete several records in one transaction.  Returns rows removed."""
        ids = list(backup_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        with self._connect() as conn:
            cursor = conn.execute(
                f"DELETE FROM backups WHERE id IN ({placeholders})", ids
            )
            conn.commit()
        logger.debug("Deleted %d backup records", cursor.rowcount)
        return cursor.rowcount

    # ── helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> BackupRecord:
        return BackupRecord(
            id=row["id"],
            filesystem_path=row["path"],
            created_at=row["created_at"],
            size_bytes=row["size"],
            manifest_hash=row["manifest_hash"],
        )
