# Core Module - Shared Utilities
#
# Core module provides shared functionality across vulnsync modules:
# - Audit logging
# - Configuration
# - SQLite connection helpers

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    get_audit_logger,
    set_audit_logger,
)
from .config import Settings, load_settings

__all__ = [
    # Audit Logging
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    "set_audit_logger",
    # Configuration
    "Settings",
    "load_settings",
]
