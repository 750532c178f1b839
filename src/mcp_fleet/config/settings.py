"""Settings and configuration management for MCP Fleet."""

import shlex
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FLEET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Docker configuration
    docker_host: str | None = Field(
        default=None,
        description="Docker engine URL, e.g. tcp://localhost:2375 (defaults to Docker's standard detection)",
    )

    docker_timeout_s: int = Field(
        default=60,
        description="Timeout in seconds for single Docker API calls",
    )

    # State database configuration
    state_db: str = Field(
        default="./fleet-state.db",
        description="Path to SQLite state database holding the fleet snapshot and layout",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    log_format: str = Field(
        default="json",
        description="Log format (json or text)",
    )

    # Server configuration
    host: str = Field(
        default="0.0.0.0",
        description="Server host to bind to",
    )

    port: int = Field(
        default=5005,
        description="Server port to bind to",
    )

    api_prefix: str = Field(
        default="/api",
        description="Path prefix for REST endpoints",
    )

    mcp_enabled: bool = Field(
        default=True,
        description="Mount the MCP tool surface alongside the REST API",
    )

    mcp_path: str = Field(
        default="/mcp",
        description="Mount path for the MCP streamable-http transport",
    )

    # Rebuild scripts
    scripts_dir: str = Field(
        default="/app/scripts",
        description="Directory holding rebuild scripts, as seen by this process",
    )

    container_scripts_dir: str = Field(
        default="/app/scripts",
        description="Path prefix of scripts_dir inside this process' filesystem",
    )

    host_scripts_dir: str = Field(
        default="/opt/fleet/scripts",
        description="Path prefix substituted for container_scripts_dir when running on the host",
    )

    host_user: str = Field(
        default="",
        description="Host user the rebuild script runs as (empty runs without su)",
    )

    host_exec_prefix: str = Field(
        default="nsenter --target 1 --mount --uts --ipc --net --pid --",
        description="Command prefix that escapes into the host namespaces",
    )

    script_pattern: str = Field(
        default=r"^UP_(.+)\.sh$",
        description="Regular expression matching rebuild scripts; group 1 is the service name",
    )

    rebuild_timeout_s: int | None = Field(
        default=None,
        description="Kill rebuild scripts running longer than this (unset means unbounded)",
    )

    drain_grace_s: int = Field(
        default=30,
        description="Grace period in seconds for running rebuilds during shutdown",
    )

    max_output_bytes: int = Field(
        default=16 * 1024 * 1024,
        description="Maximum accumulated output kept per rebuild job",
    )

    # Dependency inference
    dependency_prefixes: str = Field(
        default="ENDPOINT_MODULE_,URI_,VITE_URI_,MQTT_URI",
        description="Comma-separated, ordered env var prefixes that mark a dependency URL",
    )

    port_suffix: str = Field(
        default="PORT",
        description="Env var suffix that advertises a container's listening port",
    )

    port_exclude_prefix: str = Field(
        default="VITE_",
        description="Env var prefix of build-time variables that never advertise a port",
    )

    layout_column_width: int = Field(
        default=650,
        description="Horizontal distance between dependency levels in the computed layout",
    )

    layout_row_height: int = Field(
        default=280,
        description="Vertical distance between nodes of one level in the computed layout",
    )

    # Logs
    log_follow_tail: int = Field(
        default=50,
        description="Number of past lines sent when a log follow starts",
    )

    log_follow_idle_timeout_s: int | None = Field(
        default=None,
        description="Close a followed log stream after this many idle seconds (unset means never)",
    )

    export_logs_tail: int = Field(
        default=5000,
        description="Default number of lines included in a log export",
    )

    subscriber_queue_size: int = Field(
        default=1000,
        description="Maximum pending events per live channel subscriber",
    )

    @property
    def dependency_prefixes_list(self) -> List[str]:
        """Parse dependency prefixes into an ordered list."""
        return [p.strip() for p in self.dependency_prefixes.split(",") if p.strip()]

    @property
    def host_exec_prefix_list(self) -> List[str]:
        """Split the host exec prefix into argv items."""
        return shlex.split(self.host_exec_prefix)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
