"""Structured audit logging for operator actions."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from mcp_fleet.utils.logging import get_logger

_SENSITIVE_WORDS = ("password", "token", "secret", "key", "auth", "credentials", "private")


class AuditEventType(str, Enum):
    """Types of audit events."""

    # Container actions
    CONTAINER_START = "container_start"
    CONTAINER_STOP = "container_stop"
    CONTAINER_RESTART = "container_restart"
    CONTAINER_REMOVE = "container_remove"
    CONTAINER_LOGS_EXPORT = "container_logs_export"

    # Rebuild events
    REBUILD_START = "rebuild_start"
    REBUILD_REJECTED = "rebuild_rejected"
    REBUILD_COMPLETE = "rebuild_complete"

    # Layout events
    LAYOUT_SAVE = "layout_save"
    LAYOUT_RESET = "layout_reset"

    # System events
    SYSTEM_STARTUP = "system_startup"
    SYSTEM_SHUTDOWN = "system_shutdown"
    CACHE_REFRESH = "cache_refresh"
    CACHE_CLEAR = "cache_clear"


class AuditLogger:
    """Structured audit logger for tracking operator-triggered changes."""

    def __init__(self):
        """Initialize the audit logger."""
        self._logger = get_logger("audit")
        self._logger.setLevel(logging.INFO)

    def log_event(
        self,
        event_type: AuditEventType,
        container_id: Optional[str] = None,
        container_name: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Log an audit event.

        Args:
            event_type: Type of event being logged
            container_id: Engine container ID if relevant
            container_name: Container identity if relevant
            details: Additional event-specific details
        """
        event: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type.value,
        }
        if container_id:
            event["container_id"] = container_id
        if container_name:
            event["container_name"] = container_name

        sanitized = self._sanitize_details(details or {})
        if sanitized:
            event["details"] = sanitized

        self._logger.info("audit_event", extra=event)

    def _sanitize_details(self, details: dict[str, Any]) -> dict[str, Any]:
        """Redact values whose key looks sensitive, recursing into dicts and lists."""
        sanitized: dict[str, Any] = {}
        for key, value in details.items():
            if any(word in key.lower() for word in _SENSITIVE_WORDS):
                sanitized[key] = "***REDACTED***"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_details(value)
            elif isinstance(value, list):
                sanitized[key] = [
                    self._sanitize_details(item) if isinstance(item, dict) else item
                    for item in value
                ]
            else:
                sanitized[key] = value
        return sanitized


# Global audit logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """
    Get the global audit logger instance.

    Returns:
        AuditLogger instance
    """
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger
