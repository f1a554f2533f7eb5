"""Constants, loggers, and the error hierarchy of the tunnel."""

from __future__ import annotations

import logging
from enum import Enum

import pyarrow as pa

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DATA_SCHEMA = pa.schema([pa.field("data", pa.binary(), nullable=False)])
"""Schema of both IPC streams: one opaque binary payload per row."""

DEFAULT_CHUNK_SIZE = 1024
DEFAULT_PORT = 8080

_logger = logging.getLogger("git_remote_rpc.server")
_access_logger = logging.getLogger("git_remote_rpc.access")
_client_logger = logging.getLogger("git_remote_rpc.client")
_subprocess_logger = logging.getLogger("git_remote_rpc.subprocess")


class StatusCode(Enum):
    """Category of a failure reported to the remote caller."""

    INVALID_ARGUMENT = "invalid_argument"
    INTERNAL = "internal"
    UNAVAILABLE = "unavailable"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TunnelError(Exception):
    """Base class for every failure raised by the tunnel."""

    status_code: StatusCode = StatusCode.INTERNAL


class TransportError(TunnelError):
    """Stream establishment or frame send/receive failed."""

    status_code = StatusCode.UNAVAILABLE

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        """Initialize with a description and the underlying fault."""
        self.cause = cause
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class RpcError(TunnelError):
    """Raised on the client side when the server reports an error."""

    def __init__(self, status_code: StatusCode, error_type: str, error_message: str) -> None:
        """Initialize with error details from the remote side."""
        self.status_code = status_code
        self.error_type = error_type
        self.error_message = error_message
        super().__init__(f"{error_type}: {error_message}")


class ControlChannelError(TunnelError):
    """The control channel from git could not be read."""


class UnsupportedCommand(ControlChannelError):
    """git sent a control line this helper does not understand."""

    def __init__(self, line: str) -> None:
        """Initialize with the offending line."""
        self.line = line
        super().__init__(f"unsupported command: {line}")


class ValidationError(TunnelError):
    """A stream was rejected before any subprocess was spawned."""

    status_code = StatusCode.INVALID_ARGUMENT


class InvalidMetadata(ValidationError):
    """Stream metadata is absent or malformed."""


class ServiceNotPermitted(ValidationError):
    """The requested service is not on the allow-list."""

    def __init__(self, service: str) -> None:
        """Initialize with the rejected service name."""
        self.service = service
        super().__init__(f"bad service: {service}")


class RepositoryNotPermitted(ValidationError):
    """The repository identifier is rejected by the repository policy."""

    def __init__(self, repository: str, reason: str) -> None:
        """Initialize with the rejected identifier and the reason."""
        self.repository = repository
        self.reason = reason
        super().__init__(f"bad repository {repository!r}: {reason}")


class ServiceFailed(TunnelError):
    """The backing command could not be run or exited with a failure status."""

    status_code = StatusCode.INTERNAL

    def __init__(self, service: str, stderr: str, returncode: int | None = None) -> None:
        """Initialize with the service, its captured stderr and exit status."""
        self.service = service
        self.stderr = stderr
        self.returncode = returncode
        super().__init__(f"{service} failed: {stderr}")
