"""Single-flight execution of host rebuild scripts with live output."""

import asyncio
import codecs
import os
import shlex
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp_fleet.config import Settings
from mcp_fleet.managers.event_broker import (
    FLEET_TOPIC,
    REBUILD_STATUS_CHANGED,
    SCRIPT_COMPLETED,
    SCRIPT_OUTPUT,
    EventBroker,
)
from mcp_fleet.managers.fleet_cache import FleetCache
from mcp_fleet.utils import get_logger
from mcp_fleet.utils.audit_logger import AuditEventType, get_audit_logger
from mcp_fleet.utils.docker_client import EngineClient
from mcp_fleet.utils.exceptions import (
    ProcessSpawnError,
    RebuildInProgressError,
    ScriptNotFoundError,
    ValidationError,
)
from mcp_fleet.utils.metrics_collector import MetricsCollector, get_metrics_collector

logger = get_logger(__name__)

READ_CHUNK_SIZE = 4096

TRUNCATION_MARKER = "\n[output truncated]\n"


@dataclass
class RebuildJob:
    """A running rebuild; exists only between start and completion."""

    identity: str
    container_id: str
    container_name: str
    script_name: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    command: List[str] = field(default_factory=list)
    output_chunks: List[str] = field(default_factory=list)
    output_bytes: int = 0
    truncated: bool = False
    exit_code: Optional[int] = None
    outcome: str = "pending"
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    def append_output(self, text: str, limit: int) -> None:
        """Accumulate output up to ``limit`` bytes, then mark truncated."""
        if self.truncated:
            return
        size = len(text.encode("utf-8"))
        if self.output_bytes + size > limit:
            self.truncated = True
            self.output_chunks.append(TRUNCATION_MARKER)
            return
        self.output_chunks.append(text)
        self.output_bytes += size

    @property
    def output(self) -> str:
        """Accumulated output so far."""
        return "".join(self.output_chunks)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "containerId": self.container_id,
            "containerName": self.container_name,
            "identity": self.identity,
            "scriptName": self.script_name,
            "startedAt": self.started_at.isoformat(),
            "outputBytes": self.output_bytes,
            "outcome": self.outcome,
        }


class RebuildRegistry:
    """
    Running rebuilds keyed by container identity.

    ``begin`` checks and registers without yielding to the event loop, so
    two requests for one identity can never both succeed.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._jobs: Dict[str, RebuildJob] = {}

    def begin(self, job: RebuildJob) -> None:
        """
        Register a job.

        Raises:
            RebuildInProgressError: If the identity already has a job
        """
        existing = self._jobs.get(job.identity)
        if existing is not None:
            raise RebuildInProgressError(job.identity, existing.started_at.isoformat())
        self._jobs[job.identity] = job

    def finish(self, identity: str) -> Optional[RebuildJob]:
        """Remove and return the job of an identity."""
        return self._jobs.pop(identity, None)

    def get(self, identity: str) -> Optional[RebuildJob]:
        """Return the running job of an identity, if any."""
        return self._jobs.get(identity)

    def is_running(self, identity: str) -> bool:
        """True while the identity has a running job."""
        return identity in self._jobs

    def active(self) -> List[RebuildJob]:
        """Snapshot of running jobs."""
        return list(self._jobs.values())

    def __len__(self) -> int:
        return len(self._jobs)


class RebuildOrchestrator:
    """Validates rebuild requests, runs scripts on the host and broadcasts progress."""

    def __init__(
        self,
        settings: Settings,
        broker: EventBroker,
        cache: FleetCache,
        engine: EngineClient,
        registry: RebuildRegistry | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Initialize rebuild orchestrator.

        Args:
            settings: Application settings (script paths, host identity, limits)
            broker: Event broker for the fleet topic
            cache: Fleet cache used to resolve container identities
            engine: Engine client used when the cache does not know a container
            registry: Single-flight registry
            metrics: Metrics collector
        """
        self.settings = settings
        self.broker = broker
        self.cache = cache
        self.engine = engine
        self.registry = registry if registry is not None else RebuildRegistry()
        self.metrics = metrics or get_metrics_collector()
        self.audit = get_audit_logger()

    def is_rebuilding(self, identity: str) -> bool:
        """True while the identity has a running rebuild."""
        return self.registry.is_running(identity)

    def resolve_script(self, script_name: str) -> Path:
        """
        Locate a script inside the scripts directory.

        Raises:
            ValidationError: If the name points outside the directory
            ScriptNotFoundError: If the file is missing or unreadable
        """
        if Path(script_name).name != script_name or script_name in (".", ".."):
            raise ValidationError("scriptName", "scriptName must be a file name inside the scripts directory")
        path = Path(self.settings.scripts_dir) / script_name
        if not path.is_file() or not os.access(path, os.R_OK):
            raise ScriptNotFoundError(script_name)
        return path

    def host_path(self, path: Path) -> str:
        """Translate a local script path to the same file on the host."""
        local = str(path)
        prefix = self.settings.container_scripts_dir.rstrip("/")
        if prefix and (local == prefix or local.startswith(prefix + "/")):
            return self.settings.host_scripts_dir.rstrip("/") + local[len(prefix):]
        return local

    def build_command(self, host_path: str) -> List[str]:
        """Command that runs the script on the host as the configured user."""
        command = list(self.settings.host_exec_prefix_list)
        if self.settings.host_user:
            command += ["su", "-", self.settings.host_user, "-c", f"bash {shlex.quote(host_path)}"]
        else:
            command += ["bash", host_path]
        return command

    async def resolve_identity(self, container_id: str) -> str:
        """
        Resolve a container ID or name to its identity.

        Raises:
            ContainerNotFoundError: If neither the cache nor the engine knows it
            EngineUnavailableError: If the engine must be asked and is down
        """
        record = self.cache.find(container_id)
        if record is not None:
            return record.name
        inspect = await asyncio.to_thread(self.engine.inspect_container, container_id)
        return (inspect.get("Name") or "").removeprefix("/") or inspect.get("Id") or container_id

    async def execute(
        self,
        script_name: Optional[str],
        container_id: Optional[str],
        container_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Start a rebuild and return immediately.

        Progress and outcome are only reported on the fleet topic.

        Args:
            script_name: Script file name inside the scripts directory
            container_id: Engine ID (or name) of the container being rebuilt
            container_name: Display name reported in events

        Returns:
            Acknowledgement payload

        Raises:
            ValidationError: If a required field is missing
            ScriptNotFoundError: If the script does not exist
            ContainerNotFoundError: If the container cannot be resolved
            RebuildInProgressError: If the container is already rebuilding
        """
        if not script_name:
            raise ValidationError("scriptName", "Script name is required")
        if not container_id:
            raise ValidationError("containerId", "Container ID is required")

        script_path = self.resolve_script(script_name)
        identity = await self.resolve_identity(container_id)
        display_name = container_name or identity

        command = self.build_command(self.host_path(script_path))
        job = RebuildJob(
            identity=identity,
            container_id=container_id,
            container_name=display_name,
            script_name=script_name,
            command=command,
        )

        try:
            self.registry.begin(job)
        except RebuildInProgressError:
            self.audit.log_event(
                AuditEventType.REBUILD_REJECTED,
                container_id=container_id,
                container_name=identity,
                details={"script": script_name},
            )
            raise

        self.metrics.set_active_rebuilds(len(self.registry))
        self.broker.publish(
            FLEET_TOPIC,
            REBUILD_STATUS_CHANGED,
            {"containerId": container_id, "rebuilding": True, "containerName": display_name},
        )
        self.audit.log_event(
            AuditEventType.REBUILD_START,
            container_id=container_id,
            container_name=identity,
            details={"script": script_name, "command": command},
        )
        logger.info(
            "Rebuild started",
            extra={"container_id": container_id, "container_name": display_name, "command": command},
        )

        job.task = asyncio.create_task(self._run(job))

        return {
            "success": True,
            "message": "Script execution started",
            "containerId": container_id,
            "containerName": display_name,
        }

    async def _pump(self, stream: asyncio.StreamReader, kind: str, job: RebuildJob) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            text = decoder.decode(chunk, final=not chunk)
            if text:
                job.append_output(text, self.settings.max_output_bytes)
                self.broker.publish(
                    FLEET_TOPIC,
                    SCRIPT_OUTPUT,
                    {
                        "containerId": job.container_id,
                        "containerName": job.container_name,
                        "data": text,
                        "type": kind,
                    },
                )
            if not chunk:
                return

    async def _communicate(self, process: asyncio.subprocess.Process, job: RebuildJob) -> int:
        await asyncio.gather(
            self._pump(process.stdout, "stdout", job),
            self._pump(process.stderr, "stderr", job),
        )
        return await process.wait()

    async def _stop_process(self, process: asyncio.subprocess.Process) -> int:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        return await process.wait()

    async def _run(self, job: RebuildJob) -> None:
        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *job.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            error = ProcessSpawnError(job.command[0], e)
            logger.error(
                "Failed to start rebuild script",
                extra={"container_id": job.container_id, "error": str(error)},
            )
            job.append_output(f"\nError: {error}", self.settings.max_output_bytes)
            self._complete(job, 1, error=str(error), outcome="spawn_error")
            return
        except BaseException as e:
            message = f"Rebuild script did not start: {e!r}"
            job.append_output(f"\nError: {message}", self.settings.max_output_bytes)
            self._complete(job, 1, error=message, outcome="spawn_error")
            raise

        timeout = self.settings.rebuild_timeout_s
        try:
            exit_code = await asyncio.wait_for(self._communicate(process, job), timeout=timeout)
        except asyncio.TimeoutError:
            exit_code = await self._stop_process(process)
            message = f"Rebuild timed out after {timeout} seconds"
            job.append_output(f"\nError: {message}", self.settings.max_output_bytes)
            self._complete(job, exit_code, error=message, duration=time.monotonic() - started)
            return
        except asyncio.CancelledError:
            exit_code = await self._stop_process(process)
            message = "Rebuild cancelled during shutdown"
            job.append_output(f"\nError: {message}", self.settings.max_output_bytes)
            self._complete(job, exit_code, error=message, duration=time.monotonic() - started)
            raise

        self._complete(job, exit_code, duration=time.monotonic() - started)

    def _complete(
        self,
        job: RebuildJob,
        exit_code: int,
        error: Optional[str] = None,
        outcome: Optional[str] = None,
        duration: Optional[float] = None,
    ) -> None:
        """Leave the registry, then report status change and completion in that order."""
        self.registry.finish(job.identity)
        success = exit_code == 0 and error is None
        job.exit_code = exit_code
        job.outcome = "success" if success else "failure"

        status: Dict[str, Any] = {
            "containerId": job.container_id,
            "rebuilding": False,
            "containerName": job.container_name,
            "success": success,
        }
        completed: Dict[str, Any] = {
            "containerId": job.container_id,
            "containerName": job.container_name,
            "output": job.output,
            "exitCode": exit_code,
            "success": success,
        }
        if error:
            status["error"] = error
            completed["error"] = error

        self.broker.publish(FLEET_TOPIC, REBUILD_STATUS_CHANGED, status)
        self.broker.publish(FLEET_TOPIC, SCRIPT_COMPLETED, completed)

        self.metrics.record_rebuild(outcome or job.outcome, duration)
        self.metrics.set_active_rebuilds(len(self.registry))
        self.audit.log_event(
            AuditEventType.REBUILD_COMPLETE,
            container_id=job.container_id,
            container_name=job.identity,
            details={"exit_code": exit_code, "success": success, "error": error},
        )
        log = logger.info if success else logger.warning
        log(
            "Rebuild finished",
            extra={
                "container_id": job.container_id,
                "container_name": job.container_name,
                "exit_code": exit_code,
                "success": success,
            },
        )

    async def wait_for_job(self, identity: str) -> None:
        """Wait until the running job of an identity (if any) has completed."""
        job = self.registry.get(identity)
        if job is not None and job.task is not None:
            await asyncio.gather(job.task, return_exceptions=True)

    async def shutdown(self, grace_s: float) -> int:
        """
        Wait for running rebuilds, then cancel whatever is left.

        Args:
            grace_s: Seconds to wait before cancelling

        Returns:
            Number of jobs cancelled
        """
        tasks = [job.task for job in self.registry.active() if job.task is not None]
        if not tasks:
            return 0
        logger.info("Waiting for running rebuilds", extra={"count": len(tasks), "grace_s": grace_s})
        _, pending = await asyncio.wait(tasks, timeout=grace_s)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("Cancelled unfinished rebuilds", extra={"count": len(pending)})
        return len(pending)
