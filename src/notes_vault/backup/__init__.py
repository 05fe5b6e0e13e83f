"""Notes Vault - encrypted backup and restore."""

from .backup_archiver import BackupArchiver
from .backup_crypto import BackupCrypto, EncryptedContainer
from .backup_database import BackupDatabase, BackupRecord
from .backup_manager import BackupManager
from .credentials import CredentialStore
from .manifest import Manifest, ManifestBuilder, ManifestEntry
from .restore_orchestrator import RestoreOrchestrator, RestoreResult, RestoreState
from .retention import RetentionManager, RetentionReport
from .scheduler import BackupFrequency, BackupScheduler

__all__ = [
    "BackupArchiver",
    "BackupCrypto",
    "BackupDatabase",
    "BackupFrequency",
    "BackupManager",
    "BackupRecord",
    "BackupScheduler",
    "CredentialStore",
    "EncryptedContainer",
    "Manifest",
    "ManifestBuilder",
    "ManifestEntry",
    "RestoreOrchestrator",
    "RestoreResult",
    "RestoreState",
    "RetentionManager",
    "RetentionReport",
]
