"""Docker client utilities for MCP Fleet."""

from typing import Any, Dict, List

import docker
import requests
import urllib3
from docker import DockerClient
from docker.errors import APIError, DockerException, NotFound
from docker.types import CancellableStream

from mcp_fleet.config import Settings, get_settings
from mcp_fleet.utils import get_logger
from mcp_fleet.utils.exceptions import (
    ContainerNotFoundError,
    EngineAPIError,
    EngineUnavailableError,
)

logger = get_logger(__name__)


class DockerClientManager:
    """Manages Docker client connection with connection pooling."""

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize Docker client manager."""
        self._client: DockerClient | None = None
        self.settings = settings or get_settings()

    def get_client(self) -> DockerClient:
        """
        Get or create Docker client instance.

        The connection is not probed here; an engine that is down at startup
        must not prevent the server from serving the cached fleet.

        Returns:
            DockerClient instance

        Raises:
            DockerException: If the client cannot be configured
        """
        if self._client is None:
            try:
                if self.settings.docker_host:
                    self._client = docker.DockerClient(
                        base_url=self.settings.docker_host,
                        timeout=self.settings.docker_timeout_s,
                    )
                else:
                    self._client = docker.from_env(timeout=self.settings.docker_timeout_s)
                logger.info(
                    "Docker client configured",
                    extra={"base_url": self._client.api.base_url},
                )
            except DockerException as e:
                logger.error("Failed to configure Docker client", extra={"error": str(e)})
                raise

        return self._client

    def close(self) -> None:
        """Close Docker client connection."""
        if self._client:
            self._client.close()
            self._client = None
            logger.info("Docker client connection closed")


class EngineClient:
    """
    Thin facade over the low-level Docker API.

    Returns the engine's JSON documents unchanged and translates SDK errors
    into the MCP Fleet exception hierarchy. All methods block; async callers
    run them through ``asyncio.to_thread``.
    """

    def __init__(self, client_manager: DockerClientManager | None = None) -> None:
        """Initialize engine client."""
        self._manager = client_manager or DockerClientManager()

    @property
    def api(self) -> docker.APIClient:
        """Low-level API client (raises EngineUnavailableError if unconfigurable)."""
        try:
            return self._manager.get_client().api
        except DockerException as e:
            raise EngineUnavailableError(str(e), e) from e

    def _translate(self, operation: str, error: Exception, container_id: str | None = None):
        """Map an SDK/transport error to the MCP Fleet hierarchy."""
        if isinstance(error, NotFound) and container_id is not None:
            return ContainerNotFoundError(container_id)
        if isinstance(error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
            return EngineUnavailableError(f"Docker engine unreachable during {operation}", error)
        if isinstance(error, APIError):
            return EngineAPIError(f"Docker API error during {operation}: {error.explanation}", error)
        return EngineUnavailableError(f"Docker engine failure during {operation}: {error}", error)

    def _call(self, operation: str, fn, *args, container_id: str | None = None, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (DockerException, requests.exceptions.RequestException) as e:
            translated = self._translate(operation, e, container_id)
            logger.debug(
                "Docker API call failed",
                extra={"operation": operation, "container_id": container_id, "error": str(e)},
            )
            raise translated from e

    def ping(self) -> bool:
        """Return True when the engine answers."""
        return bool(self._call("ping", lambda: self.api.ping()))

    def list_containers(self) -> List[Dict[str, Any]]:
        """List every container (running or not) as engine summaries."""
        return self._call("list", lambda: self.api.containers(all=True))

    def inspect_container(self, container_id: str) -> Dict[str, Any]:
        """Return the full inspect document of a container."""
        return self._call(
            "inspect",
            lambda: self.api.inspect_container(container_id),
            container_id=container_id,
        )

    def container_env(self, container_id: str) -> Dict[str, str]:
        """Return a container's environment variables as a dict."""
        inspect = self.inspect_container(container_id)
        return parse_env((inspect.get("Config") or {}).get("Env"))

    def start(self, container_id: str) -> None:
        """Start a container."""
        self._call("start", lambda: self.api.start(container_id), container_id=container_id)

    def stop(self, container_id: str) -> None:
        """Stop a container."""
        self._call("stop", lambda: self.api.stop(container_id), container_id=container_id)

    def restart(self, container_id: str) -> None:
        """Restart a container."""
        self._call("restart", lambda: self.api.restart(container_id), container_id=container_id)

    def remove(self, container_id: str) -> None:
        """Force-remove a container."""
        self._call(
            "remove",
            lambda: self.api.remove_container(container_id, force=True),
            container_id=container_id,
        )

    def stats(self, container_id: str) -> Dict[str, Any]:
        """Return a single stats sample for a container."""
        return self._call(
            "stats",
            lambda: self.api.stats(container_id, stream=False),
            container_id=container_id,
        )

    def info(self) -> Dict[str, Any]:
        """Return engine-wide information."""
        return self._call("info", lambda: self.api.info())

    def _logs_url(self, container_id: str) -> str:
        return f"{self.api.base_url}/v{self.api.api_version}/containers/{container_id}/logs"

    def _open_logs(self, container_id: str, params: Dict[str, Any], stream: bool, timeout):
        # The SDK strips the frame headers itself; fetch the raw body so the
        # multiplexed format is decoded by log_frames.
        response = self.api.get(
            self._logs_url(container_id), params=params, stream=stream, timeout=timeout
        )
        if response.status_code == 404:
            response.close()
            raise NotFound(f"No such container: {container_id}", response=response)
        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            response.close()
            raise APIError(e, response=response) from e
        return response

    def raw_logs(self, container_id: str, tail: int, timestamps: bool = False) -> bytes:
        """
        Fetch the raw multiplexed log body of a container.

        Args:
            container_id: Container ID or name
            tail: Number of trailing lines
            timestamps: Prefix each line with the engine timestamp

        Returns:
            Undecoded response body
        """
        params = {
            "stdout": 1,
            "stderr": 1,
            "tail": tail,
            "timestamps": int(timestamps),
        }

        def fetch() -> bytes:
            response = self._open_logs(
                container_id, params, stream=False, timeout=self._manager.settings.docker_timeout_s
            )
            return response.content

        return self._call("logs", fetch, container_id=container_id)

    def follow_logs(
        self, container_id: str, tail: int, idle_timeout_s: int | None = None
    ) -> "LogStream":
        """
        Open a followed log stream.

        Args:
            container_id: Container ID or name
            tail: Number of past lines to include
            idle_timeout_s: Read timeout for the open stream (None waits forever)

        Returns:
            LogStream yielding raw chunks
        """
        params = {"stdout": 1, "stderr": 1, "tail": tail, "follow": 1}
        timeout = (self._manager.settings.docker_timeout_s, idle_timeout_s)
        response = self._call(
            "follow",
            lambda: self._open_logs(container_id, params, stream=True, timeout=timeout),
            container_id=container_id,
        )
        return LogStream(response, self, container_id)

    def close(self) -> None:
        """Close the underlying client."""
        self._manager.close()


class LogStream:
    """Raw chunk iterator over an open followed-logs response."""

    def __init__(self, response: requests.Response, engine: EngineClient, container_id: str) -> None:
        """Wrap an open streaming response."""
        self._response = response
        self._engine = engine
        self._container_id = container_id
        # Closing a CancellableStream shuts the socket down, waking a blocked read
        self._chunks = CancellableStream(response.iter_content(chunk_size=None), response)
        self.closed = False

    def read_chunk(self) -> bytes | None:
        """
        Block until the next chunk arrives.

        Returns:
            The chunk, or None once the stream has ended or was closed
        """
        if self.closed:
            return None
        try:
            return next(self._chunks)
        except StopIteration:
            return None
        except (requests.exceptions.RequestException, urllib3.exceptions.HTTPError, OSError) as e:
            if self.closed or is_read_timeout(e):
                return None
            raise self._engine._translate("follow", e, self._container_id) from e

    def close(self) -> None:
        """Close the upstream connection, unblocking a pending read."""
        if self.closed:
            return
        self.closed = True
        try:
            self._chunks.close()
        except DockerException as e:
            logger.debug("Log stream not cancellable, closing response", extra={"error": str(e)})
        finally:
            self._response.close()


def is_read_timeout(error: BaseException) -> bool:
    """True if the error is an idle read timeout, possibly wrapped by requests."""
    timeouts = (requests.exceptions.ReadTimeout, urllib3.exceptions.ReadTimeoutError, TimeoutError)
    if isinstance(error, timeouts):
        return True
    cause = error.args[0] if error.args else None
    return isinstance(cause, urllib3.exceptions.ReadTimeoutError)


def parse_env(env: List[str] | None) -> Dict[str, str]:
    """
    Parse engine ``KEY=VALUE`` strings into a dict.

    Values may themselves contain ``=``; entries without one are skipped.
    """
    result: Dict[str, str] = {}
    for item in env or []:
        key, sep, value = item.partition("=")
        if sep and key:
            result[key] = value
    return result
