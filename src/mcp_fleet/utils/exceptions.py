"""Custom exceptions for MCP Fleet."""


class MCPFleetError(Exception):
    """Base exception for MCP Fleet errors."""

    status_code = 500


class ValidationError(MCPFleetError):
    """Exception raised when a request is missing a required field or is malformed."""

    status_code = 400

    def __init__(self, field: str, message: str | None = None) -> None:
        """
        Initialize ValidationError.

        Args:
            field: Name of the offending field
            message: Optional message overriding the default
        """
        self.field = field
        super().__init__(message or f"{field} is required")


class NotFoundError(MCPFleetError):
    """Base exception for unknown resources."""

    status_code = 404


class ContainerNotFoundError(NotFoundError):
    """Exception raised when a container is not found."""

    def __init__(self, identifier: str) -> None:
        """
        Initialize ContainerNotFoundError.

        Args:
            identifier: Container ID or name that was not found
        """
        self.identifier = identifier
        super().__init__(f"Container not found: {identifier}")


class ScriptNotFoundError(NotFoundError):
    """Exception raised when a rebuild script does not exist."""

    def __init__(self, script_name: str) -> None:
        """
        Initialize ScriptNotFoundError.

        Args:
            script_name: Script file name that was not found
        """
        self.script_name = script_name
        super().__init__(f"Script not found: {script_name}")


class RebuildInProgressError(MCPFleetError):
    """Exception raised when a rebuild is requested for a container already rebuilding."""

    status_code = 409

    def __init__(self, identity: str, started_at: str | None = None) -> None:
        """
        Initialize RebuildInProgressError.

        Args:
            identity: Container identity with a running rebuild
            started_at: ISO timestamp of the running rebuild
        """
        self.identity = identity
        self.started_at = started_at
        message = f"Rebuild already running for {identity}"
        if started_at:
            message += f" (started {started_at})"
        super().__init__(message)


class EngineAPIError(MCPFleetError):
    """Exception raised when Docker engine API calls fail."""

    status_code = 502

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        """
        Initialize EngineAPIError.

        Args:
            message: Error message
            original_error: Original exception from the Docker SDK
        """
        self.original_error = original_error
        super().__init__(message)


class EngineUnavailableError(EngineAPIError):
    """Exception raised when the Docker engine cannot be reached at all."""

    status_code = 503

    def __init__(
        self,
        message: str = "Docker engine is unreachable",
        original_error: Exception | None = None,
    ) -> None:
        """
        Initialize EngineUnavailableError.

        Args:
            message: Error message
            original_error: Original connection error
        """
        super().__init__(message, original_error)


class ProcessSpawnError(MCPFleetError):
    """Exception raised when a rebuild process cannot be started."""

    def __init__(self, command: str, original_error: Exception) -> None:
        """
        Initialize ProcessSpawnError.

        Args:
            command: Executable that failed to start
            original_error: OSError raised by the spawn
        """
        self.command = command
        self.original_error = original_error
        super().__init__(f"Failed to start {command}: {original_error}")


class PersistenceError(MCPFleetError):
    """Exception raised when the state database cannot be written or read."""

    def __init__(self, table: str, original_error: Exception | None = None) -> None:
        """
        Initialize PersistenceError.

        Args:
            table: Logical table being accessed
            original_error: Underlying database error
        """
        self.table = table
        self.original_error = original_error
        detail = f": {original_error}" if original_error else ""
        super().__init__(f"Failed to persist {table}{detail}")
