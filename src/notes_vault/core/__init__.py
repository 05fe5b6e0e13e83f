# Notes Vault: Core Module - Shared Utilities
#
# - Audit logging
# - SQLite connection helper and the live database pool

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    audit,
    configure_audit_logger,
    get_audit_logger,
    log_security_event,
)
from .db import DatabasePool, connect

__all__ = [
    # Audit Logging
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "audit",
    "configure_audit_logger",
    "get_audit_logger",
    "log_security_event",
    # Database
    "DatabasePool",
    "connect",
]
