# Notes Vault - Main Package
#
# Storage and backup subsystem for a local-first notes application:
# content-addressed attachment blobs, password-encrypted backups of the
# whole dataset, and verified atomic restore.

__version__ = "0.3.0"
__description__ = "Content-addressed attachment storage and encrypted backups for local notes"

from .core import (
    EventType,
    EventSeverity,
    get_audit_logger,
)
from .config import VaultSettings, load_settings

__all__ = [
    "__version__",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    "VaultSettings",
    "load_settings",
]
