"""
Notes Vault Exception Classes

Every error carries a ``user_message`` suitable for showing in the UI
without implying that the operation succeeded.
"""

import errno
from typing import Optional


class VaultError(Exception):
    """Base exception for storage and backup operations"""

    user_message = "The operation failed."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.user_message)


class StorageIOError(VaultError):
    """Raised when a disk or filesystem operation fails"""

    user_message = "A disk error occurred while accessing your notes data."

    def __init__(self, message: Optional[str] = None, disk_full: bool = False):
        super().__init__(message)
        self.disk_full = disk_full
        if disk_full:
            self.user_message = "The disk is full. Free up space and try again."

    @classmethod
    def from_os_error(cls, exc: OSError, action: str) -> "StorageIOError":
        disk_full = exc.errno == errno.ENOSPC
        return cls(f"{action}: {exc}", disk_full=disk_full)


class AuthenticationFailed(VaultError):
    """Raised when decryption fails: wrong password or tampered data"""

    user_message = "Incorrect password, or the backup file is corrupted."


class ChecksumMismatch(VaultError):
    """Raised when restored files do not match their manifest"""

    user_message = "The backup file is corrupted and cannot be restored."


class FormatVersionUnsupported(VaultError):
    """Raised when a backup manifest has an unknown format version"""

    user_message = "This backup was made by an incompatible version and cannot be restored."


class BackupNotFound(VaultError):
    """Raised when a backup file or record does not exist"""

    user_message = "The backup could not be found."


class BlobNotFound(VaultError):
    """Raised when no blob exists for a hash"""

    user_message = "The attachment data could not be found."


class OperationInProgress(VaultError):
    """Raised when a backup or restore is already running"""

    user_message = "A backup or restore is already in progress. Try again when it finishes."


class EmptyDatasetRejected(VaultError):
    """Raised when there is nothing to back up"""

    user_message = "There is no data to back up yet."


class PoolClosed(VaultError):
    """Raised when the live database is used while its pool is closed"""

    user_message = "The notes database is temporarily unavailable."


class CredentialUnavailable(VaultError):
    """Raised when no auto-backup password is stored or the OS store fails"""

    user_message = (
        "No password was given and no auto-backup password is set. "
        "Set an auto-backup password first."
    )
