# Notes Vault: Core - Audit Logging
#
# Append-only audit trail for storage and backup events. Every backup,
# restore, deletion and retention pass is recorded with a timestamp and
# event id so a user can reconstruct what happened to their data.
# Passwords are never passed to the audit logger.

import logging
import os
import socket
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog

AUDIT_LOGGER_NAME = "notes_vault.audit"


class EventType(str, Enum):
    """Types of events that can be logged."""
    # Blob store
    BLOB_WRITTEN = "blob.written"
    BLOB_DELETED = "blob.deleted"
    BLOB_GC = "blob.gc"

    # Backups
    BACKUP_CREATED = "backup.created"
    BACKUP_FAILED = "backup.failed"
    BACKUP_DELETED = "backup.deleted"
    BACKUP_RESTORED = "backup.restored"
    BACKUP_RESTORE_FAILED = "backup.restore_failed"
    BACKUP_PRUNED = "backup.pruned"
    BACKUP_RECONCILED = "backup.reconciled"
    BACKUP_SCHEDULED = "backup.scheduled"
    BACKUP_SCHEDULE_CANCELLED = "backup.schedule_cancelled"

    # Credentials
    CREDENTIAL_STORED = "credential.stored"
    CREDENTIAL_DELETED = "credential.deleted"

    # System
    SYSTEM_START = "system.start"
    SYSTEM_STOP = "system.stop"


class EventSeverity(str, Enum):
    """
    Severity levels for audit events.

    - INFO: Normal activity
    - WARNING: Something failed but no data was touched
    - CRITICAL: Live data may need manual attention
    """
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AuditLogger:
    """
    Append-only audit logger.

    Features:
    - Structured JSON logging (structlog)
    - Automatic timestamp and event ID
    - One file per day: ``audit_<YYYY-MM-DD>.log``
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: ./audit_logs)
        """
        self.log_dir = Path(log_dir) if log_dir else Path("./audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self._file_handler = self._setup_file_handler()
        self.logger = structlog.get_logger(AUDIT_LOGGER_NAME)

    def _setup_file_handler(self) -> logging.FileHandler:
        """Attach a file handler for today's log to the audit logger."""
        today = datetime.now().strftime("%Y-%m-%d")
        log_file = self.log_dir / f"audit_{today}.log"

        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter('%(message)s'))  # structlog renders JSON

        std_logger = logging.getLogger(AUDIT_LOGGER_NAME)
        for handler in list(std_logger.handlers):
            std_logger.removeHandler(handler)
            handler.close()
        std_logger.addHandler(file_handler)
        std_logger.setLevel(logging.INFO)
        std_logger.propagate = False
        return file_handler

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Log an audit event.

        Args:
            event_type: Type of event (from EventType enum)
            severity: Severity level (from EventSeverity enum)
            message: Human-readable event description
            details: Additional event details (never secrets)

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())
        self.logger.info(
            "audit_event",
            event_id=event_id,
            event_type=event_type.value,
            severity=severity.value,
            message=message,
            timestamp=datetime.now(timezone.utc).isoformat(),
            details=details or {},
            context=self._get_default_context(),
        )
        return event_id

    def close(self) -> None:
        logging.getLogger(AUDIT_LOGGER_NAME).removeHandler(self._file_handler)
        self._file_handler.close()

    @staticmethod
    def _get_default_context() -> Dict[str, Any]:
        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def configure_audit_logger(log_dir: Path) -> AuditLogger:
    """Replace the global audit logger with one writing to ``log_dir``."""
    global _audit_logger
    if _audit_logger is not None:
        _audit_logger.close()
    _audit_logger = AuditLogger(log_dir=log_dir)
    return _audit_logger


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def log_security_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    **kwargs
) -> str:
    """
    Convenience function for logging audit events.

    Usage:
        log_security_event(
            EventType.BACKUP_CREATED,
            EventSeverity.INFO,
            "Backup created",
            details={"path": "backups/backup_20260101_020000.enc"}
        )
    """
    return get_audit_logger().log_event(event_type, severity, message, **kwargs)


def audit(event_type: EventType, message: str, details: Optional[Dict[str, Any]] = None,
          severity: EventSeverity = EventSeverity.INFO) -> None:
    """Best-effort audit logging; never raises into a storage operation."""
    try:
        log_security_event(event_type, severity, message, details=details)
    except Exception:
        logging.getLogger(__name__).warning("Audit log failed: %s", message, exc_info=True)
