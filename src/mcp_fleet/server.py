"""MCP Fleet server: MCP tools and process entry point."""

import asyncio
import sys

import uvicorn
from fastmcp import FastMCP

from mcp_fleet import __version__
from mcp_fleet.config import get_settings
from mcp_fleet.mcp_tools import (
    ContainerListOutput,
    DependenciesOutput,
    ExecuteScriptInput,
    ExecuteScriptOutput,
    GraphOutput,
    HealthCheckResponse,
    RebuildListOutput,
    RefreshCacheOutput,
)
from mcp_fleet.services import get_services
from mcp_fleet.utils import get_logger, setup_logging
from mcp_fleet.utils.audit_logger import AuditEventType, get_audit_logger
from mcp_fleet.utils.docker_client import EngineClient
from mcp_fleet.utils.exceptions import MCPFleetError

mcp = FastMCP("MCP Fleet")
logger = get_logger(__name__)


async def check_engine(engine: EngineClient) -> bool:
    """Ping the Docker engine; False if it does not answer."""
    try:
        return await asyncio.to_thread(engine.ping)
    except MCPFleetError as e:
        logger.warning("Docker health check failed", extra={"error": str(e)})
        return False


@mcp.tool()
async def health() -> HealthCheckResponse:
    """
    Health check endpoint to verify server status and Docker connectivity.

    Returns:
        HealthCheckResponse with status and Docker connection info
    """
    services = get_services()
    docker_connected = await check_engine(services.engine)
    return HealthCheckResponse(
        status="healthy" if docker_connected else "degraded",
        docker_connected=docker_connected,
        cached_containers=len(services.cache),
        active_rebuilds=len(services.registry),
        version=__version__,
    )


@mcp.tool()
async def list_containers() -> ContainerListOutput:
    """
    List every known container.

    Live containers come from the engine; containers seen before but gone
    now (or all of them, when the engine is down) are reported from the
    snapshot with state 'unavailable'.

    Returns:
        ContainerListOutput with the merged fleet
    """
    logger.debug("Container list requested")
    fleet = await get_services().reconciler.list_fleet()
    return ContainerListOutput(containers=[record.to_api() for record in fleet])


@mcp.tool()
async def container_dependencies() -> DependenciesOutput:
    """
    Infer which containers depend on which.

    Returns:
        DependenciesOutput with one entry per container
    """
    services = get_services()
    fleet = await services.reconciler.list_fleet()
    dependencies = await services.graph_builder.dependencies(fleet)
    return DependenciesOutput(containers=[entry.to_api() for entry in dependencies])


@mcp.tool()
async def dependency_graph() -> GraphOutput:
    """
    Build the layered dependency graph.

    Returns:
        GraphOutput with nodes (level, position) and edges
    """
    services = get_services()
    fleet = await services.reconciler.list_fleet()
    graph = await services.graph_builder.graph(fleet, services.layout.get_positions())
    data = graph.to_api()
    return GraphOutput(nodes=data["nodes"], edges=data["edges"])


@mcp.tool()
async def execute_script(input_data: ExecuteScriptInput) -> ExecuteScriptOutput:
    """
    Start a rebuild script for a container.

    Returns as soon as the script is running; at most one rebuild per
    container runs at a time.

    Args:
        input_data: Script name, container ID and optional display name

    Returns:
        ExecuteScriptOutput acknowledgement
    """
    logger.info(
        "Rebuild requested",
        extra={"script": input_data.script_name, "container_id": input_data.container_id},
    )
    ack = await get_services().orchestrator.execute(
        input_data.script_name, input_data.container_id, input_data.container_name
    )
    return ExecuteScriptOutput(
        success=ack["success"],
        message=ack["message"],
        container_id=ack["containerId"],
        container_name=ack["containerName"],
    )


@mcp.tool()
async def list_rebuilds() -> RebuildListOutput:
    """
    List rebuild jobs currently running.

    Returns:
        RebuildListOutput with one entry per job
    """
    jobs = get_services().registry.active()
    return RebuildListOutput(rebuilds=[job.to_dict() for job in jobs])


@mcp.tool()
async def refresh_cache() -> RefreshCacheOutput:
    """
    Re-inspect the live fleet and store it in the snapshot.

    Returns:
        RefreshCacheOutput with the snapshot size
    """
    merged = await get_services().reconciler.refresh()
    get_audit_logger().log_event(AuditEventType.CACHE_REFRESH, details={"containers": len(merged)})
    return RefreshCacheOutput(cached_containers=len(merged))


def main() -> None:
    """Main entry point for the MCP Fleet server."""
    from mcp_fleet.api import create_app

    settings = get_settings()
    setup_logging(log_level=settings.log_level, log_format=settings.log_format)

    logger.info(
        "Starting server",
        extra={
            "host": settings.host,
            "port": settings.port,
            "api_prefix": settings.api_prefix,
            "mcp_path": settings.mcp_path if settings.mcp_enabled else None,
            "scripts_dir": settings.scripts_dir,
        },
    )

    try:
        uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down")
        sys.exit(0)
    except Exception as e:
        logger.error("Server error", extra={"error": str(e)})
        sys.exit(1)


if __name__ == "__main__":
    main()
