"""Auto-backup password storage in the OS credential store.

Scheduled backups run without a user at the keyboard, so their password is
kept in the platform keyring (Windows Credential Manager, macOS Keychain,
Secret Service on Linux) under one service/key pair. The password itself is
never logged or audited, only the fact that it was stored or removed.
"""

import logging

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from ..core.audit_log import EventType, audit
from ..exceptions import CredentialUnavailable

logger = logging.getLogger(__name__)

SERVICE_NAME = "notes-vault"
AUTO_BACKUP_PASSWORD_KEY = "auto_backup_password"


class CredentialStore:
    """Keyring-backed storage for the auto-backup password.

    Args:
        service_name: Keyring service the entry is filed under.
    """

    def __init__(self, service_name: str = SERVICE_NAME):
        self.service_name = service_name

    def store_auto_backup_password(self, password: str) -> None:
        if not password:
            raise ValueError("Auto-backup password must not be empty.")
        try:
            keyring.set_password(self.service_name, AUTO_BACKUP_PASSWORD_KEY, password)
        except KeyringError as e:
            raise CredentialUnavailable(f"Failed to store auto-backup password: {e}")
        logger.info("Auto-backup password stored in the OS credential store")
        audit(EventType.CREDENTIAL_STORED, "Auto-backup password stored",
              {"service": self.service_name})

    def get_auto_backup_password(self) -> str:
        """
        Raises:
            CredentialUnavailable: Nothing stored, or the keyring failed.
        """
        try:
            password = keyring.get_password(self.service_name, AUTO_BACKUP_PASSWORD_KEY)
        except KeyringError as e:
            raise CredentialUnavailable(f"Failed to retrieve auto-backup password: {e}")
        if password is None:
            raise CredentialUnavailable("No auto-backup password is stored.")
        return password

    def delete_auto_backup_password(self) -> bool:
        """Remove the stored password; returns False if none was stored."""
        try:
            keyring.delete_password(self.service_name, AUTO_BACKUP_PASSWORD_KEY)
        except PasswordDeleteError:
            return False
        except KeyringError as e:
            raise CredentialUnavailable(f"Failed to delete auto-backup password: {e}")
        logger.info("Auto-backup password deleted from the OS credential store")
        audit(EventType.CREDENTIAL_DELETED, "Auto-backup password deleted",
              {"service": self.service_name})
        return True

    def has_auto_backup_password(self) -> bool:
        try:
            self.get_auto_backup_password()
        except CredentialUnavailable:
            return False
        return True
