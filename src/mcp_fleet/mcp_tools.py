"""Input/output models of the MCP tools."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class HealthCheckResponse(BaseModel):
    """Health check response model."""

    status: str = Field(..., description="healthy, or degraded when the engine is unreachable")
    docker_connected: bool = Field(..., description="Whether the Docker engine answered a ping")
    cached_containers: int = Field(default=0, description="Containers in the fleet snapshot")
    active_rebuilds: int = Field(default=0, description="Rebuild jobs currently running")
    version: str = "0.1.0"


class ContainerListOutput(BaseModel):
    """Output model for list_containers tool."""

    containers: List[Dict[str, Any]] = Field(
        ..., description="Merged fleet view; cache-only entries have state 'unavailable'"
    )


class DependenciesOutput(BaseModel):
    """Output model for container_dependencies tool."""

    containers: List[Dict[str, Any]] = Field(
        ..., description="Per-container outgoing dependencies inferred from environment variables"
    )


class GraphOutput(BaseModel):
    """Output model for dependency_graph tool."""

    nodes: List[Dict[str, Any]] = Field(..., description="Containers with level and position")
    edges: List[Dict[str, Any]] = Field(..., description="Dependency edges (source depends on target)")


class ExecuteScriptInput(BaseModel):
    """Input model for execute_script tool."""

    script_name: str = Field(..., description="Rebuild script file name, e.g. UP_api.sh")
    container_id: str = Field(..., description="ID or name of the container being rebuilt")
    container_name: Optional[str] = Field(None, description="Display name used in events")


class ExecuteScriptOutput(BaseModel):
    """Output model for execute_script tool."""

    success: bool = Field(..., description="Whether the rebuild was started")
    message: str = Field(..., description="Human-readable acknowledgement")
    container_id: str = Field(..., description="Container ID as requested")
    container_name: str = Field(..., description="Display name used in events")


class RebuildListOutput(BaseModel):
    """Output model for list_rebuilds tool."""

    rebuilds: List[Dict[str, Any]] = Field(..., description="Rebuild jobs currently running")


class RefreshCacheOutput(BaseModel):
    """Output model for refresh_cache tool."""

    cached_containers: int = Field(..., description="Containers in the snapshot after refresh")
