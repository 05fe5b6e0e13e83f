"""Retention manager: bound the number of backups, keep metadata honest.

Deleting a backup means deleting its file and its history row as one unit.
If the file cannot be deleted, the row is only dropped when the file is
confirmed gone; otherwise the record stays and the next pass retries, so a
transiently locked file is never lost track of.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from .backup_database import BackupDatabase

logger = logging.getLogger(__name__)


@dataclass
class RetentionReport:
    kept: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    retry_later: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "kept": list(self.kept),
            "deleted": list(self.deleted),
            "retry_later": list(self.retry_later),
        }


def _file_is_gone(path: Path) -> bool:
    return not path.exists()


class RetentionManager:
    """Enforces the maximum backup count and reconciles orphaned rows.

    Args:
        backup_db: Backup history table.
        confirm_gone: Called after a failed file delete; returns True only if
            the file is genuinely absent (default: a fresh existence check).
    """

    def __init__(
        self,
        backup_db: BackupDatabase,
        confirm_gone: Optional[Callable[[Path], bool]] = None,
    ):
        self._db = backup_db
        self._confirm_gone = confirm_gone or _file_is_gone

    def enforce_retention(self, max_count: int) -> RetentionReport:
        """Keep the ``max_count`` newest backups and delete the rest."""
        if max_count < 0:
            raise ValueError("max_count must not be negative")

        records = self._db.list_backups()  # newest first
        report = RetentionReport(kept=[r.id for r in records[:max_count]])
        removable = []
        for record in records[max_count:]:
            path = Path(record.filesystem_path)
            try:
                path.unlink()
                logger.info("Deleted old backup: %s", path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Failed to delete backup file %s: %s", path, e)
                if not self._confirm_gone(path):
                    report.retry_later.append(record.id)
                    continue
            removable.append(record.id)

        self._db.delete_backup_records(removable)
        report.deleted = removable
        return report

    def reconcile_orphans(self) -> List[str]:
        """Drop rows whose backup file no longer exists.

        Files without a row are left alone; an operator may have put them
        there on purpose.

        Returns:
            IDs of removed records.
        """
        orphaned = [
            r.id for r in self._db.list_backups()
            if not Path(r.filesystem_path).exists()
        ]
        if orphaned:
            self._db.delete_backup_records(orphaned)
            logger.info("Reconciled %d orphaned backup records", len(orphaned))
        return orphaned
