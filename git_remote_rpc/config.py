"""Server configuration."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from git_remote_rpc.rpc import (
    DEFAULT_ALLOWED_SERVICES,
    DEFAULT_PORT,
    RepositoryPolicy,
    ServiceValidator,
    SubprocessExecutor,
    TunnelServer,
)

DEFAULT_LISTEN_ADDR = f"localhost:{DEFAULT_PORT}"


def parse_listen_address(addr: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``:port``) into its parts.

    Raises:
        ValueError: If the port is missing or not a number.

    """
    host, sep, port = addr.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"expected HOST:PORT, got {addr!r}")
    return host.strip("[]") or "0.0.0.0", int(port)


@dataclass(frozen=True)
class ServerConfig:
    """Everything needed to build and run a tunnel server.

    Attributes:
        host: Listen host.
        port: Listen port (0 picks a free one).
        allowed_services: Services a client may request.  May only narrow
            ``DEFAULT_ALLOWED_SERVICES``.
        repository_root: Directory all repositories must live under, or
            ``None`` to pass identifiers through after lexical checks.
        max_connections: Concurrent session limit, or ``None`` for no limit.
        commands: Per-service command-line overrides (the repository path is
            appended as the last argument).

    """

    host: str = "localhost"
    port: int = DEFAULT_PORT
    allowed_services: frozenset[str] = DEFAULT_ALLOWED_SERVICES
    repository_root: Path | None = None
    max_connections: int | None = None
    commands: Mapping[str, Sequence[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Reject services outside the built-in allow-list and bad limits."""
        unknown = set(self.allowed_services) - DEFAULT_ALLOWED_SERVICES
        if unknown:
            raise ValueError(f"services not in the built-in allow-list: {sorted(unknown)}")
        if not self.allowed_services:
            raise ValueError("at least one service must be allowed")
        if self.max_connections is not None and self.max_connections < 1:
            raise ValueError("max_connections must be at least 1")

    def build_server(self) -> TunnelServer:
        """Construct the validator, the executor and the server."""
        validator = ServiceValidator(
            self.allowed_services,
            RepositoryPolicy(root=self.repository_root),
        )
        return TunnelServer(validator, SubprocessExecutor(self.commands))
