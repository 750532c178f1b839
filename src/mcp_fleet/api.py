"""HTTP and live channel surface of MCP Fleet.

REST endpoints live under the configured prefix (``/api``); the live
channel is a WebSocket at ``/ws`` speaking JSON messages:

  Client -> Server:
    {"event": "subscribe-logs", "containerId": "abc123"}
    {"event": "unsubscribe-logs"}

  Server -> Client:
    {"event": "log-data", "containerId": "abc123", "data": "...", "stream": "stdout"}
    {"event": "log-error", "containerId": "abc123", "error": "..."}
    {"event": "rebuild-status-changed", "containerId": "...", "rebuilding": true, ...}
    {"event": "script-output", "containerId": "...", "data": "...", "type": "stdout"}
    {"event": "script-completed", "containerId": "...", "exitCode": 0, ...}
    {"event": "error", "message": "..."}
"""

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from mcp_fleet import __version__
from mcp_fleet.config import Settings, get_settings
from mcp_fleet.managers.event_broker import FLEET_TOPIC, Subscription
from mcp_fleet.models.fleet import FleetModel
from mcp_fleet.server import check_engine, mcp
from mcp_fleet.services import FleetServices, set_services
from mcp_fleet.utils import get_logger, setup_logging
from mcp_fleet.utils.audit_logger import AuditEventType, get_audit_logger
from mcp_fleet.utils.exceptions import MCPFleetError
from mcp_fleet.utils.log_frames import demux_lines

logger = get_logger(__name__)

# Lines returned by the plain logs endpoint
RECENT_LOG_LINES = 100


class ExecuteScriptRequest(FleetModel):
    """Body of POST /scripts/execute; presence is checked by the orchestrator."""

    script_name: Optional[str] = None
    container_id: Optional[str] = None
    container_name: Optional[str] = None


def get_fleet(request: Request) -> FleetServices:
    """Services of the application serving the request."""
    return request.app.state.services


def export_filename(container_name: str, now: datetime | None = None) -> str:
    """Attachment name of a log export, e.g. ``web_logs_2024-05-01T10-20-30.txt``."""
    now = now or datetime.now(timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H:%M:%S").replace(":", "-")
    return f"{container_name}_logs_{stamp}.txt"


router = APIRouter()


# ========== Fleet ==========


@router.get("/containers")
async def list_containers(services: FleetServices = Depends(get_fleet)) -> Any:
    """Merged fleet view, each entry flagged with its rebuild state."""
    fleet = await services.reconciler.list_fleet()
    return [record.to_api() for record in fleet]


@router.get("/containers/dependencies")
async def container_dependencies(services: FleetServices = Depends(get_fleet)) -> Any:
    """Outgoing dependencies of every container."""
    fleet = await services.reconciler.list_fleet()
    dependencies = await services.graph_builder.dependencies(fleet)
    return [entry.to_api() for entry in dependencies]


@router.post("/containers/cache/refresh")
async def refresh_cache(services: FleetServices = Depends(get_fleet)) -> Any:
    """Re-inspect the live fleet into the snapshot."""
    merged = await services.reconciler.refresh()
    get_audit_logger().log_event(AuditEventType.CACHE_REFRESH, details={"containers": len(merged)})
    return {"success": True, "containers": len(merged)}


@router.delete("/containers/cache")
async def clear_cache(services: FleetServices = Depends(get_fleet)) -> Any:
    """Forget every cached container."""
    await services.cache.clear()
    services.metrics.set_cached_containers(0)
    get_audit_logger().log_event(AuditEventType.CACHE_CLEAR)
    return {"success": True, "message": "Cache cleared"}


# ========== Graph ==========


@router.get("/graph")
async def dependency_graph(services: FleetServices = Depends(get_fleet)) -> Any:
    """Layered dependency graph with saved or computed positions."""
    fleet = await services.reconciler.list_fleet()
    graph = await services.graph_builder.graph(fleet, services.layout.get_positions())
    return graph.to_api()


@router.get("/graph/positions")
async def get_positions(services: FleetServices = Depends(get_fleet)) -> Any:
    """Saved node positions keyed by container name."""
    return {name: position.to_api() for name, position in services.layout.get_positions().items()}


@router.post("/graph/positions")
async def save_positions(
    positions: Dict[str, Any] = Body(...),
    services: FleetServices = Depends(get_fleet),
) -> Any:
    """Replace the saved layout."""
    saved = await services.layout.save_positions(positions)
    get_audit_logger().log_event(AuditEventType.LAYOUT_SAVE, details={"count": len(saved)})
    return {"success": True, "message": "Positions saved"}


@router.delete("/graph/positions")
async def reset_positions(services: FleetServices = Depends(get_fleet)) -> Any:
    """Reset the layout to computed positions."""
    await services.layout.reset()
    get_audit_logger().log_event(AuditEventType.LAYOUT_RESET)
    return {"success": True, "message": "Positions reset"}


# ========== Scripts and rebuilds ==========


@router.get("/scripts")
async def list_scripts(services: FleetServices = Depends(get_fleet)) -> Any:
    """Available rebuild scripts keyed by service name."""
    return services.scripts.list_scripts()


@router.post("/scripts/execute", status_code=202)
async def execute_script(
    body: Optional[ExecuteScriptRequest] = None,
    services: FleetServices = Depends(get_fleet),
) -> Any:
    """Start a rebuild; progress is reported on the live channel."""
    body = body or ExecuteScriptRequest()
    return await services.orchestrator.execute(body.script_name, body.container_id, body.container_name)


@router.get("/rebuilds")
async def list_rebuilds(services: FleetServices = Depends(get_fleet)) -> Any:
    """Rebuild jobs currently running."""
    return [job.to_dict() for job in services.registry.active()]


# ========== Single container ==========


@router.get("/containers/{container_id}")
async def inspect_container(container_id: str, services: FleetServices = Depends(get_fleet)) -> Any:
    """Engine inspect document of a container."""
    return await asyncio.to_thread(services.engine.inspect_container, container_id)


async def _container_action(services: FleetServices, container_id: str, action: str) -> Dict[str, str]:
    operations = {
        "start": (services.engine.start, AuditEventType.CONTAINER_START, "started"),
        "stop": (services.engine.stop, AuditEventType.CONTAINER_STOP, "stopped"),
        "restart": (services.engine.restart, AuditEventType.CONTAINER_RESTART, "restarted"),
        "remove": (services.engine.remove, AuditEventType.CONTAINER_REMOVE, "removed"),
    }
    operation, event_type, past = operations[action]
    await asyncio.to_thread(operation, container_id)
    get_audit_logger().log_event(event_type, container_id=container_id)
    logger.info(f"Container {past}", extra={"container_id": container_id})
    return {"message": f"Container {past} successfully"}


@router.post("/containers/{container_id}/start")
async def start_container(container_id: str, services: FleetServices = Depends(get_fleet)) -> Any:
    """Start a container."""
    return await _container_action(services, container_id, "start")


@router.post("/containers/{container_id}/stop")
async def stop_container(container_id: str, services: FleetServices = Depends(get_fleet)) -> Any:
    """Stop a container."""
    return await _container_action(services, container_id, "stop")


@router.post("/containers/{container_id}/restart")
async def restart_container(container_id: str, services: FleetServices = Depends(get_fleet)) -> Any:
    """Restart a container."""
    return await _container_action(services, container_id, "restart")


@router.delete("/containers/{container_id}")
async def remove_container(container_id: str, services: FleetServices = Depends(get_fleet)) -> Any:
    """Force-remove a container."""
    return await _container_action(services, container_id, "remove")


@router.get("/containers/{container_id}/logs", response_class=PlainTextResponse)
async def container_logs(container_id: str, services: FleetServices = Depends(get_fleet)) -> Any:
    """Most recent log lines as plain text."""
    raw = await asyncio.to_thread(services.engine.raw_logs, container_id, RECENT_LOG_LINES)
    return PlainTextResponse("\n".join(demux_lines(raw)))


@router.get("/containers/{container_id}/export-logs")
async def export_logs(
    container_id: str,
    tail: Optional[int] = Query(None, ge=1),
    services: FleetServices = Depends(get_fleet),
) -> Any:
    """Download timestamped, cleaned logs as a text attachment."""
    tail = tail or services.settings.export_logs_tail
    raw = await asyncio.to_thread(services.engine.raw_logs, container_id, tail, True)
    inspect = await asyncio.to_thread(services.engine.inspect_container, container_id)
    name = (inspect.get("Name") or "").removeprefix("/") or container_id
    lines = demux_lines(raw)

    get_audit_logger().log_event(
        AuditEventType.CONTAINER_LOGS_EXPORT,
        container_id=container_id,
        container_name=name,
        details={"tail": tail, "lines": len(lines)},
    )
    return PlainTextResponse(
        "\n".join(lines),
        media_type="text/plain; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(name)}"'},
    )


@router.get("/containers/{container_id}/stats")
async def container_stats(container_id: str, services: FleetServices = Depends(get_fleet)) -> Any:
    """Single resource usage sample."""
    return await asyncio.to_thread(services.engine.stats, container_id)


# ========== System ==========


@router.get("/info")
async def engine_info(services: FleetServices = Depends(get_fleet)) -> Any:
    """Engine-wide information."""
    return await asyncio.to_thread(services.engine.info)


@router.get("/health")
async def health(services: FleetServices = Depends(get_fleet)) -> Any:
    """Server status and engine connectivity."""
    docker_connected = await check_engine(services.engine)
    return {
        "status": "healthy" if docker_connected else "degraded",
        "dockerConnected": docker_connected,
        "cachedContainers": len(services.cache),
        "activeRebuilds": len(services.registry),
        "version": __version__,
    }


@router.get("/metrics")
async def metrics(services: FleetServices = Depends(get_fleet)) -> Response:
    """Prometheus metrics."""
    return Response(services.metrics.get_metrics(), media_type=CONTENT_TYPE_LATEST)


# ========== Live channel ==========


class LiveConnection:
    """One observer: the fleet topic plus at most one followed container."""

    def __init__(self, websocket: WebSocket, services: FleetServices) -> None:
        """Bind a connection to the services it observes."""
        self.websocket = websocket
        self.services = services
        self._send_lock = asyncio.Lock()
        self._fleet: Optional[Subscription] = None
        self._fleet_task: Optional[asyncio.Task] = None
        self._logs: Optional[Subscription] = None
        self._logs_task: Optional[asyncio.Task] = None

    async def send(self, message: Dict[str, Any]) -> None:
        """Send one JSON message."""
        async with self._send_lock:
            await self.websocket.send_json(message)

    async def _forward(self, subscription: Subscription) -> None:
        try:
            async for event in subscription:
                await self.send(event.to_message())
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug("Live channel closed while sending", extra={"error": str(e)})

    def open(self) -> None:
        """Start relaying fleet events."""
        self._fleet = self.services.broker.subscribe(FLEET_TOPIC)
        self._fleet_task = asyncio.create_task(self._forward(self._fleet))

    async def subscribe_logs(self, container_id: str) -> None:
        """Follow a container, replacing any previous follow."""
        await self.unsubscribe_logs()
        self._logs = self.services.log_follows.subscribe(container_id)
        self._logs_task = asyncio.create_task(self._forward(self._logs))

    async def unsubscribe_logs(self) -> None:
        """Stop following the current container, if any."""
        subscription, task = self._logs, self._logs_task
        self._logs, self._logs_task = None, None
        if subscription is not None:
            await self.services.log_follows.unsubscribe(subscription)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def close(self) -> None:
        """Release every subscription of the connection."""
        await self.unsubscribe_logs()
        if self._fleet is not None:
            self._fleet.close()
        if self._fleet_task is not None:
            await asyncio.gather(self._fleet_task, return_exceptions=True)

    async def handle(self, raw: str) -> None:
        """Dispatch one client message."""
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            await self.send({"event": "error", "message": "Invalid JSON"})
            return
        if not isinstance(message, dict):
            await self.send({"event": "error", "message": "Message must be a JSON object"})
            return

        msg_type = message.get("event", "")
        if msg_type == "subscribe-logs":
            container_id = message.get("containerId")
            if not container_id or not isinstance(container_id, str):
                await self.send({"event": "error", "message": "containerId is required"})
                return
            await self.subscribe_logs(container_id)
        elif msg_type == "unsubscribe-logs":
            await self.unsubscribe_logs()
        else:
            await self.send({"event": "error", "message": f"Unknown event: {msg_type}"})


async def live_channel(websocket: WebSocket) -> None:
    """WebSocket handler of the live channel."""
    await websocket.accept()
    connection = LiveConnection(websocket, websocket.app.state.services)
    connection.open()
    logger.info("Live channel client connected")

    try:
        while True:
            await connection.handle(await websocket.receive_text())
    except WebSocketDisconnect:
        logger.info("Live channel client disconnected")
    finally:
        await connection.close()


# ========== Application ==========


def register_exception_handlers(app: FastAPI) -> None:
    """Map the MCP Fleet exception hierarchy to HTTP responses."""

    @app.exception_handler(MCPFleetError)
    async def fleet_error_handler(request: Request, exc: MCPFleetError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "Request failed",
            extra={"path": request.url.path, "status": exc.status_code, "error": str(exc)},
        )
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
        )


def create_app(settings: Settings | None = None, services: FleetServices | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings
        services: Prebuilt services (built from settings if None)

    Returns:
        Configured FastAPI application
    """
    if services is None:
        services = FleetServices(settings or get_settings())
    settings = services.settings
    set_services(services)

    mcp_app = mcp.http_app(path="/") if settings.mcp_enabled else None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(log_level=settings.log_level, log_format=settings.log_format)
        logger.info("Starting MCP Fleet", extra={"version": __version__})
        await services.start()
        try:
            if mcp_app is not None:
                async with mcp_app.lifespan(app):
                    yield
            else:
                yield
        finally:
            logger.info("Shutting down MCP Fleet")
            await services.stop()
            logger.info("MCP Fleet stopped")

    app = FastAPI(title="MCP Fleet", version=__version__, lifespan=lifespan)
    app.state.services = services
    register_exception_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)
    app.add_api_websocket_route("/ws", live_channel)
    if mcp_app is not None:
        app.mount(settings.mcp_path, mcp_app)
    return app
