"""Unit tests for audit logger."""

from unittest.mock import MagicMock

import pytest

from mcp_fleet.utils.audit_logger import AuditEventType, AuditLogger, get_audit_logger


@pytest.fixture
def audit_logger():
    """Audit logger writing to a mock."""
    logger = AuditLogger()
    logger._logger = MagicMock()
    return logger


def logged_extra(audit_logger):
    call_args = audit_logger._logger.info.call_args
    assert call_args[0][0] == "audit_event"
    return call_args[1]["extra"]


def test_audit_logger_singleton():
    """Test that get_audit_logger returns singleton instance."""
    assert get_audit_logger() is get_audit_logger()


def test_container_action_event(audit_logger):
    """Test logging an operator action on a container."""
    audit_logger.log_event(
        AuditEventType.CONTAINER_RESTART, container_id="abc123", container_name="web"
    )

    extra = logged_extra(audit_logger)
    assert extra["event_type"] == "container_restart"
    assert extra["container_id"] == "abc123"
    assert extra["container_name"] == "web"
    assert "timestamp" in extra
    assert "details" not in extra


def test_rebuild_event_details(audit_logger):
    """Test that rebuild details are logged as given."""
    audit_logger.log_event(
        AuditEventType.REBUILD_START,
        container_id="abc123",
        container_name="web",
        details={"script": "UP_web.sh", "command": ["bash", "/opt/fleet/scripts/UP_web.sh"]},
    )

    extra = logged_extra(audit_logger)
    assert extra["event_type"] == "rebuild_start"
    assert extra["details"]["script"] == "UP_web.sh"
    assert extra["details"]["command"][0] == "bash"


def test_system_event_without_container(audit_logger):
    """Test that system events carry no container fields."""
    audit_logger.log_event(AuditEventType.SYSTEM_SHUTDOWN, details={"cancelled_rebuilds": 0})

    extra = logged_extra(audit_logger)
    assert extra["event_type"] == "system_shutdown"
    assert "container_id" not in extra
    assert extra["details"] == {"cancelled_rebuilds": 0}


def test_sensitive_keys_redacted(audit_logger):
    """Test that secrets never reach the audit log."""
    sanitized = audit_logger._sanitize_details(
        {"DB_PASSWORD": "hunter2", "api_token": "t", "Private_Key": "k", "tail": 100}
    )

    assert sanitized == {
        "DB_PASSWORD": "***REDACTED***",
        "api_token": "***REDACTED***",
        "Private_Key": "***REDACTED***",
        "tail": 100,
    }


def test_nested_redaction(audit_logger):
    """Test sanitization of nested dictionaries and lists of dictionaries."""
    sanitized = audit_logger._sanitize_details(
        {
            "env": {"MQTT_PASSWORD": "x", "URI_API": "http://api:9000"},
            "entries": [{"secret": "y", "name": "a"}, "plain"],
        }
    )

    assert sanitized["env"] == {"MQTT_PASSWORD": "***REDACTED***", "URI_API": "http://api:9000"}
    assert sanitized["entries"] == [{"secret": "***REDACTED***", "name": "a"}, "plain"]
