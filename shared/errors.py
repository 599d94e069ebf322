"""Error taxonomy for the streaming control plane.

Every error raised across a component boundary derives from
ControlPlaneError so the API layer can map it to a status code and a JSON
body without knowing the concrete type.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional


class ControlPlaneError(Exception):
    """Base class for all expected (operational) failures.

    Attributes:
        code: Stable machine-readable error code
        status_code: HTTP status the API layer responds with
        details: Structured payload describing the failure
    """

    code = "CONTROL_PLANE_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for API responses."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "statusCode": self.status_code,
            "details": self.details,
            "timestamp": self.timestamp,
        }


class InstallationNotFound(ControlPlaneError):
    """The broadcast server binary could not be located."""

    code = "INSTALLATION_NOT_FOUND"
    status_code = 503

    def __init__(self, message: str = "Icecast installation not found", searched=None):
        super().__init__(message, {"searchedPaths": list(searched or [])})


class ServerUnavailable(ControlPlaneError):
    """The broadcast server is installed but not accepting sources."""

    code = "SERVER_UNAVAILABLE"
    status_code = 503


class CapacityExceeded(ControlPlaneError):
    """Starting another worker would exceed the server's source limit."""

    code = "CAPACITY_EXCEEDED"
    status_code = 409

    def __init__(self, limit: int, active: int, message: Optional[str] = None):
        if message is None:
            if limit <= 0:
                message = "Source limit unknown; refusing to start new streams"
            else:
                message = f"Source limit reached ({active}/{limit} streams active)"
        super().__init__(message, {"capacity": {"limit": limit, "active": active}})
        self.limit = limit
        self.active = active


class DuplicateStreamId(ControlPlaneError):
    """A stream with the same id or display name already exists."""

    code = "DUPLICATE_STREAM_ID"
    status_code = 409


class StreamNotFound(ControlPlaneError):
    code = "STREAM_NOT_FOUND"
    status_code = 404

    def __init__(self, stream_id: str):
        super().__init__(f"Stream not found: {stream_id}", {"streamId": stream_id})
        self.stream_id = stream_id


class InvalidStreamConfig(ControlPlaneError):
    """Bad user input for a stream (name, device or bitrate)."""

    code = "INVALID_STREAM_CONFIG"
    status_code = 400


class InvalidStreamState(ControlPlaneError):
    """The requested operation is not allowed in the stream's current status."""

    code = "INVALID_STREAM_STATE"
    status_code = 409


class DeviceConflict(ControlPlaneError):
    """The capture device is already feeding another active stream."""

    code = "DEVICE_CONFLICT"
    status_code = 409


class ProcessSpawnFailure(ControlPlaneError):
    """The OS refused to start the worker process."""

    code = "PROCESS_SPAWN_FAILURE"
    status_code = 500

    def __init__(self, message: str, diagnosis: Optional[Dict[str, Any]] = None):
        super().__init__(message, {"diagnosis": diagnosis})
        self.diagnosis = diagnosis


class ProcessCrashed(ControlPlaneError):
    """A worker exited on its own, during verification or while running."""

    code = "PROCESS_CRASHED"
    status_code = 502

    def __init__(
        self,
        message: str,
        exit_code: Optional[int],
        stderr: str = "",
        diagnosis: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message,
            {"exitCode": exit_code, "stderr": stderr, "diagnosis": diagnosis},
        )
        self.exit_code = exit_code
        self.stderr = stderr
        self.diagnosis = diagnosis


class ConfigInvalid(ControlPlaneError):
    """The broadcast server configuration has blocking errors."""

    code = "CONFIG_INVALID"
    status_code = 422

    def __init__(self, errors: List[str], message: str = "Icecast configuration is invalid"):
        super().__init__(message, {"errors": list(errors)})
        self.errors = list(errors)


class ConfigWarning(ControlPlaneError):
    """Non-blocking configuration findings, raised only in strict mode."""

    code = "CONFIG_WARNING"
    status_code = 422

    def __init__(self, warnings: List[str], message: str = "Icecast configuration has warnings"):
        super().__init__(message, {"warnings": list(warnings)})
        self.warnings = list(warnings)


class VerificationTimeout(ControlPlaneError):
    """An operation was issued but never confirmed within its window."""

    code = "VERIFICATION_TIMEOUT"
    status_code = 504

    def __init__(self, operation: str, timeout: float, message: Optional[str] = None):
        super().__init__(
            message or f"{operation} was not confirmed within {timeout:g}s",
            {"operation": operation, "timeout": timeout},
        )
        self.operation = operation
        self.timeout = timeout


class PortConflict(ControlPlaneError):
    """The configured port is bound by a process that is not the broadcast server."""

    code = "PORT_CONFLICT"
    status_code = 409

    def __init__(self, port: int, message: Optional[str] = None):
        super().__init__(
            message or f"Port {port} is already in use by another process",
            {"port": port},
        )
        self.port = port


class OperationSuperseded(ControlPlaneError):
    """A newer operation on the same stream cancelled this one."""

    code = "OPERATION_SUPERSEDED"
    status_code = 409
