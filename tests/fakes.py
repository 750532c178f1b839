"""Fakes and builders shared by the test suite."""

import queue
from typing import Any, Dict, List, Optional

from mcp_fleet.utils.exceptions import ContainerNotFoundError, EngineUnavailableError


def make_summary(
    name: str,
    state: str = "running",
    container_id: Optional[str] = None,
    image: str = "example/app:latest",
    status: Optional[str] = None,
) -> Dict[str, Any]:
    """Engine container-list entry for a named container."""
    return {
        "Id": container_id or f"{name}-{'0' * 24}",
        "Names": [f"/{name}"],
        "Image": image,
        "State": state,
        "Status": status or ("Up 5 minutes" if state == "running" else "Exited (0) 1 minute ago"),
        "Ports": [{"PrivatePort": 80, "PublicPort": 8080, "Type": "tcp", "IP": "0.0.0.0"}],
    }


def frame(payload: bytes, stream: int = 1) -> bytes:
    """Encode one multiplexed log frame."""
    return bytes([stream, 0, 0, 0]) + len(payload).to_bytes(4, "big") + payload


class FakeLogStream:
    """Followed log stream fed by the test."""

    def __init__(self, chunks: Optional[List[bytes]] = None) -> None:
        self._queue: "queue.Queue[Optional[bytes]]" = queue.Queue()
        for chunk in chunks or []:
            self._queue.put(chunk)
        self.closed = False

    def push(self, chunk: bytes) -> None:
        self._queue.put(chunk)

    def end(self) -> None:
        self._queue.put(None)

    def read_chunk(self) -> Optional[bytes]:
        if self.closed:
            return None
        item = self._queue.get()
        return None if self.closed else item

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put(None)


class FakeEngine:
    """In-memory stand-in for EngineClient."""

    def __init__(self) -> None:
        self.summaries: List[Dict[str, Any]] = []
        self.envs: Dict[str, Dict[str, str]] = {}
        self.logs: Dict[str, bytes] = {}
        self.streams: Dict[str, FakeLogStream] = {}
        self.down = False
        self.failing_inspects: set = set()
        self.actions: List[tuple] = []
        self.closed = False

    def add(self, name: str, env: Optional[Dict[str, str]] = None, **kwargs) -> Dict[str, Any]:
        summary = make_summary(name, **kwargs)
        self.summaries.append(summary)
        self.envs[summary["Id"]] = dict(env or {})
        return summary

    def _check(self) -> None:
        if self.down:
            raise EngineUnavailableError()

    def _find(self, container_id: str) -> Dict[str, Any]:
        for summary in self.summaries:
            if container_id in (summary["Id"], summary["Names"][0].removeprefix("/")):
                return summary
        raise ContainerNotFoundError(container_id)

    def ping(self) -> bool:
        self._check()
        return True

    def list_containers(self) -> List[Dict[str, Any]]:
        self._check()
        return [dict(summary) for summary in self.summaries]

    def inspect_container(self, container_id: str) -> Dict[str, Any]:
        self._check()
        summary = self._find(container_id)
        if summary["Id"] in self.failing_inspects:
            raise EngineUnavailableError("inspect failed")
        env = self.envs.get(summary["Id"], {})
        return {
            "Id": summary["Id"],
            "Name": summary["Names"][0],
            "Config": {"Env": [f"{k}={v}" for k, v in env.items()]},
            "State": {"Status": summary["State"]},
        }

    def container_env(self, container_id: str) -> Dict[str, str]:
        inspect = self.inspect_container(container_id)
        return dict(item.split("=", 1) for item in inspect["Config"]["Env"])

    def start(self, container_id: str) -> None:
        self._check()
        self._find(container_id)
        self.actions.append(("start", container_id))

    def stop(self, container_id: str) -> None:
        self._check()
        self._find(container_id)
        self.actions.append(("stop", container_id))

    def restart(self, container_id: str) -> None:
        self._check()
        self._find(container_id)
        self.actions.append(("restart", container_id))

    def remove(self, container_id: str) -> None:
        self._check()
        summary = self._find(container_id)
        self.summaries.remove(summary)
        self.actions.append(("remove", container_id))

    def stats(self, container_id: str) -> Dict[str, Any]:
        self._check()
        self._find(container_id)
        return {"cpu_stats": {}, "memory_stats": {"usage": 1024}}

    def info(self) -> Dict[str, Any]:
        self._check()
        return {"Containers": len(self.summaries), "ServerVersion": "fake"}

    def raw_logs(self, container_id: str, tail: int, timestamps: bool = False) -> bytes:
        self._check()
        self._find(container_id)
        self.actions.append(("logs", container_id, tail, timestamps))
        return self.logs.get(container_id, b"")

    def follow_logs(self, container_id: str, tail: int, idle_timeout_s: Optional[int] = None):
        self._check()
        self._find(container_id)
        stream = self.streams.get(container_id)
        if stream is None or stream.closed:
            stream = FakeLogStream()
            self.streams[container_id] = stream
        return stream

    def close(self) -> None:
        self.closed = True
