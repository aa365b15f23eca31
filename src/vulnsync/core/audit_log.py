# Core Module - Audit Trail
#
# Append-only JSON-lines audit trail for the ingestion and correlation
# pipeline. Every ingestion cycle, rejected manual trigger, failed feed
# source, and per-tenant correlation outcome is written here so an
# operator can reconstruct what the system saw and when.
#
# Operational (debug/info) logging stays on the stdlib ``logging``
# module; this file only carries audit events.

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

import structlog

AUDIT_LOGGER_NAME = "vulnsync.audit"


class EventType(str, Enum):
    """Types of pipeline events recorded in the audit trail."""

    INGESTION_STARTED = "ingestion.started"
    INGESTION_COMPLETED = "ingestion.completed"
    INGESTION_REJECTED = "ingestion.rejected"
    SOURCE_FAILED = "ingestion.source_failed"

    CORRELATION_COMPLETED = "correlation.completed"
    CORRELATION_FAILED = "correlation.failed"

    SCHEDULER_STARTED = "scheduler.started"
    SCHEDULER_STOPPED = "scheduler.stopped"


class EventSeverity(str, Enum):
    """Severity levels for audit events."""

    INFO = "info"
    WARNING = "warning"
    ALERT = "alert"


class AuditLogger:
    """Append-only audit logger backed by structlog.

    Events are rendered as one JSON object per line into a daily file
    (``audit_YYYY-MM-DD.log``) under ``log_dir``.
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
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=False,
        )

        self._handler: Optional[logging.FileHandler] = None
        self._setup_file_handler()

        self.logger = structlog.get_logger(AUDIT_LOGGER_NAME)

    @property
    def log_file(self) -> Path:
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return self.log_dir / f"audit_{today}.log"

    def _setup_file_handler(self) -> None:
        """Attach a file handler for today's log to the audit logger."""
        audit = logging.getLogger(AUDIT_LOGGER_NAME)
        for handler in list(audit.handlers):
            if getattr(handler, "_vulnsync_audit", False):
                audit.removeHandler(handler)
                handler.close()

        handler = logging.FileHandler(self.log_file, mode="a", encoding="utf-8")
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(message)s"))  # structlog renders JSON
        handler._vulnsync_audit = True

        audit.addHandler(handler)
        audit.setLevel(logging.INFO)
        audit.propagate = False
        self._handler = handler

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Append an event to the audit trail.

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())
        self.logger.info(
            "pipeline_event",
            event_id=event_id,
            event_type=event_type.value,
            severity=severity.value,
            message=message,
            details=details or {},
        )
        return event_id

    def read_events(self, event_type: Optional[EventType] = None) -> List[Dict[str, Any]]:
        """Return today's events, oldest first, optionally filtered by type."""
        if self._handler is not None:
            self._handler.flush()
        path = self.log_file
        if not path.exists():
            return []

        events: List[Dict[str, Any]] = []
        with open(path, encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if event_type is not None and event.get("event_type") != event_type.value:
                    continue
                events.append(event)
        return events

    def close(self) -> None:
        if self._handler is not None:
            logging.getLogger(AUDIT_LOGGER_NAME).removeHandler(self._handler)
            self._handler.close()
            self._handler = None


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def set_audit_logger(audit_logger: Optional[AuditLogger]) -> None:
    """Replace the global audit logger (used by the CLI to honour settings)."""
    global _audit_logger
    _audit_logger = audit_logger
