# Notes Vault - Configuration
#
# Settings come from environment variables (optionally loaded from a .env
# file). Every path is derived from the data directory unless overridden.
#
#   NOTES_VAULT_DATA_DIR              data directory (db.sqlite, blobs/)
#   NOTES_VAULT_BACKUP_DIR            backup artifacts (default: data/backups)
#   NOTES_VAULT_AUDIT_LOG_DIR         audit logs (default: data/audit_logs)
#   NOTES_VAULT_RETENTION_COUNT       backups to keep (default: 10)
#   NOTES_VAULT_PREVIOUS_GRACE_HOURS  keep pre-restore db for N hours (default: 72)
#   NOTES_VAULT_MIN_PASSWORD_LENGTH   minimum backup password length (default: 8)
#   NOTES_VAULT_BACKUP_SCHEDULE       automatic backups, e.g. "daily" or "6h" (default: off)

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

DB_FILENAME = "db.sqlite"
BLOB_DIRNAME = "blobs"
BACKUP_DIRNAME = "backups"
STAGING_DIRNAME = ".restore-staging"
BACKUP_HISTORY_FILENAME = "backup_history.db"

DEFAULT_RETENTION_COUNT = 10
DEFAULT_PREVIOUS_GRACE_HOURS = 72
DEFAULT_MIN_PASSWORD_LENGTH = 8


@dataclass
class VaultSettings:
    """Resolved locations and policy knobs for the storage subsystem."""

    data_dir: Path
    backup_dir: Optional[Path] = None
    audit_log_dir: Optional[Path] = None
    retention_count: int = DEFAULT_RETENTION_COUNT
    previous_grace_hours: int = DEFAULT_PREVIOUS_GRACE_HOURS
    min_password_length: int = DEFAULT_MIN_PASSWORD_LENGTH
    backup_schedule: Optional[str] = None

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)
        if self.backup_dir is None:
            self.backup_dir = self.data_dir / BACKUP_DIRNAME
        else:
            self.backup_dir = Path(self.backup_dir)
        if self.audit_log_dir is None:
            self.audit_log_dir = self.data_dir / "audit_logs"
        else:
            self.audit_log_dir = Path(self.audit_log_dir)
        if self.retention_count < 1:
            raise ValueError("retention_count must be at least 1")

    @property
    def db_path(self) -> Path:
        return self.data_dir / DB_FILENAME

    @property
    def blob_dir(self) -> Path:
        return self.data_dir / BLOB_DIRNAME

    @property
    def staging_dir(self) -> Path:
        return self.data_dir / STAGING_DIRNAME

    @property
    def backup_history_path(self) -> Path:
        return self.backup_dir / BACKUP_HISTORY_FILENAME


def _int_setting(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[Path] = None,
) -> VaultSettings:
    """Build settings from the environment.

    Args:
        env: Mapping to read instead of ``os.environ`` (tests).
        dotenv_path: Explicit .env file; by default python-dotenv searches
            upwards from the working directory. Ignored when ``env`` is given.
    """
    if env is None:
        load_dotenv(dotenv_path=dotenv_path)
        env = os.environ

    data_dir = env.get("NOTES_VAULT_DATA_DIR") or str(Path.home() / ".notes-vault")
    backup_dir = env.get("NOTES_VAULT_BACKUP_DIR") or None
    audit_dir = env.get("NOTES_VAULT_AUDIT_LOG_DIR") or None

    return VaultSettings(
        data_dir=Path(data_dir).expanduser(),
        backup_dir=Path(backup_dir).expanduser() if backup_dir else None,
        audit_log_dir=Path(audit_dir).expanduser() if audit_dir else None,
        retention_count=_int_setting(
            env, "NOTES_VAULT_RETENTION_COUNT", DEFAULT_RETENTION_COUNT
        ),
        previous_grace_hours=_int_setting(
            env, "NOTES_VAULT_PREVIOUS_GRACE_HOURS", DEFAULT_PREVIOUS_GRACE_HOURS
        ),
        min_password_length=_int_setting(
            env, "NOTES_VAULT_MIN_PASSWORD_LENGTH", DEFAULT_MIN_PASSWORD_LENGTH
        ),
        backup_schedule=env.get("NOTES_VAULT_BACKUP_SCHEDULE", "").strip() or None,
    )
