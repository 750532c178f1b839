"""Test configuration and fixtures."""

import pytest
from fakes import FakeEngine

from mcp_fleet.config import Settings
from mcp_fleet.managers.state_store import StateStore
from mcp_fleet.models.database import DatabaseManager
from mcp_fleet.utils.metrics_collector import MetricsCollector


@pytest.fixture
def fake_engine() -> FakeEngine:
    """Fake engine with an empty fleet."""
    return FakeEngine()


@pytest.fixture
def scripts_dir(tmp_path):
    """Empty scripts directory."""
    directory = tmp_path / "scripts"
    directory.mkdir()
    return directory


@pytest.fixture
def test_settings(tmp_path, scripts_dir) -> Settings:
    """Settings pointing at temporary state and scripts, running scripts directly."""
    return Settings(
        state_db=str(tmp_path / "state" / "fleet.db"),
        scripts_dir=str(scripts_dir),
        container_scripts_dir=str(scripts_dir),
        host_scripts_dir=str(scripts_dir),
        host_exec_prefix="",
        host_user="",
        mcp_enabled=False,
        log_format="text",
        drain_grace_s=5,
    )


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector with a private registry."""
    return MetricsCollector()


@pytest.fixture
async def db_manager(test_settings):
    """State database with tables created."""
    manager = DatabaseManager(test_settings)
    await manager.create_tables()
    yield manager
    await manager.close()


@pytest.fixture
def state_store(db_manager) -> StateStore:
    """Key-value store over the test database."""
    return StateStore(db_manager)
