"""Value types shared by the client and the server."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypeAlias

import pyarrow as pa

from git_remote_rpc.metadata import REPOSITORY_KEY, REQUEST_VERSION, REQUEST_VERSION_KEY, SERVICE_KEY

# ---------------------------------------------------------------------------
# Stream metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StreamMetadata:
    """The two values attached to a stream when it is opened.

    Attributes:
        service: Name of the backing command to run on the server.
        repository: Repository identifier, passed to that command.

    """

    service: str
    repository: str

    def to_arrow(self) -> pa.KeyValueMetadata:
        """Encode as open-batch metadata, including the protocol version."""
        return pa.KeyValueMetadata(
            {
                SERVICE_KEY: self.service.encode(),
                REPOSITORY_KEY: self.repository.encode(),
                REQUEST_VERSION_KEY: REQUEST_VERSION,
            }
        )


@dataclass(frozen=True)
class ValidatedRequest:
    """A stream that passed validation.

    Attributes:
        service: Allow-listed service name.
        repository: Repository identifier as sent by the client.
        path: Argument handed to the backing command (the identifier, or
            its resolved location under the repository root).

    """

    service: str
    repository: str
    path: str


# ---------------------------------------------------------------------------
# Control commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Capabilities:
    """``capabilities``: list what this helper supports."""


@dataclass(frozen=True)
class Connect:
    """``connect <service>``: open a tunnel to *service*."""

    service: str


@dataclass(frozen=True)
class Unrecognized:
    """Any other control line."""

    line: str


ControlCommand: TypeAlias = Capabilities | Connect | Unrecognized

_CONNECT_PREFIX = "connect "


def parse_control_line(line: str) -> ControlCommand:
    """Parse one control line (without its trailing newline)."""
    if line == "capabilities":
        return Capabilities()
    if line.startswith(_CONNECT_PREFIX):
        return Connect(line[len(_CONNECT_PREFIX) :])
    return Unrecognized(line)
