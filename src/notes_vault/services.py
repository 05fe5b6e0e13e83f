"""Process-wide wiring of the storage subsystem.

The API layer and the CLI look components up here rather than building
their own, so one blob store, one live database pool, one backup manager
and one backup scheduler exist per process. Tests swap the instance with
``set_services``.
"""

import logging
from typing import Optional

from .backup.backup_manager import BackupManager
from .backup.scheduler import BackupFrequency, BackupScheduler
from .config import VaultSettings, load_settings
from .core.audit_log import configure_audit_logger
from .core.db import DatabasePool
from .exceptions import CredentialUnavailable
from .storage.blob_store import BlobStore

logger = logging.getLogger(__name__)


class VaultServices:
    """Holds the blob store, live database pool, backup manager and scheduler."""

    def __init__(self, settings: VaultSettings, configure_audit: bool = True):
        self.settings = settings
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        if configure_audit:
            configure_audit_logger(settings.audit_log_dir)

        self.blob_store = BlobStore(settings.blob_dir)
        self.blob_store.initialize()
        self.pool = DatabasePool(settings.db_path)
        self.backup_manager = BackupManager(
            settings,
            blob_store=self.blob_store,
            pool=self.pool,
        )
        self.scheduler = BackupScheduler(self.backup_manager)

    def startup(self) -> None:
        """Housekeeping that must not run during a restore."""
        purged = self.backup_manager.purge_previous()
        if purged:
            logger.info("Purged %d previous database files", len(purged))
        self.backup_manager.reconcile_orphans()
        if self.settings.backup_schedule:
            self._start_schedule(self.settings.backup_schedule)

    def _start_schedule(self, frequency: str) -> None:
        try:
            self.scheduler.schedule_backup(BackupFrequency.parse(frequency))
        except (CredentialUnavailable, ValueError) as e:
            logger.warning("Automatic backups not started: %s", e)

    def shutdown(self) -> None:
        self.scheduler.shutdown()
        self.pool.close()


_services: Optional[VaultServices] = None


def get_services() -> VaultServices:
    """Lazy singleton, created on first use from the environment."""
    global _services
    if _services is None:
        _services = VaultServices(load_settings())
    return _services


def set_services(services: Optional[VaultServices]) -> Optional[VaultServices]:
    """Replace the singleton; returns the previous instance."""
    global _services
    previous, _services = _services, services
    return previous
