"""Unit tests for settings."""

from mcp_fleet.config import Settings


def test_defaults():
    """Test defaults of the optional limits and host execution."""
    settings = Settings()

    assert settings.rebuild_timeout_s is None
    assert settings.log_follow_idle_timeout_s is None
    assert settings.host_exec_prefix_list[0] == "nsenter"
    assert settings.host_exec_prefix_list[-1] == "--"
    assert settings.dependency_prefixes_list == ["ENDPOINT_MODULE_", "URI_", "VITE_URI_", "MQTT_URI"]


def test_environment_overrides(monkeypatch):
    """Test that FLEET_ variables configure the server."""
    monkeypatch.setenv("FLEET_PORT", "8080")
    monkeypatch.setenv("FLEET_REBUILD_TIMEOUT_S", "600")
    monkeypatch.setenv("FLEET_DEPENDENCY_PREFIXES", " URI_ , ,DEP_")
    monkeypatch.setenv("FLEET_HOST_EXEC_PREFIX", "")

    settings = Settings()

    assert settings.port == 8080
    assert settings.rebuild_timeout_s == 600
    assert settings.dependency_prefixes_list == ["URI_", "DEP_"]
    assert settings.host_exec_prefix_list == []


def test_quoted_exec_prefix():
    """Test that the exec prefix honors shell quoting."""
    settings = Settings(host_exec_prefix="sudo -u 'build user' --")

    assert settings.host_exec_prefix_list == ["sudo", "-u", "build user", "--"]
