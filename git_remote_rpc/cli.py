"""Command-line entry points.

Two programs are installed:

``git-remote-rpc``
    The git remote helper.  git runs it for ``rpc://`` remotes::

        git clone rpc://git.example.com:8080/project.git

``git-rpc-server``
    The tunnel server::

        git-rpc-server --addr 0.0.0.0:8080 --root /srv/git
        git-rpc-server --allow git-upload-pack --log-level INFO --log-format json

"""

from __future__ import annotations

import logging
import sys
from enum import StrEnum
from pathlib import Path
from typing import Annotated

import typer

from git_remote_rpc.config import DEFAULT_LISTEN_ADDR, ServerConfig, parse_listen_address
from git_remote_rpc.log import Message
from git_remote_rpc.rpc import DEFAULT_ALLOWED_SERVICES, TunnelError, run_helper, serve_tcp

# ---------------------------------------------------------------------------
# Known loggers registry
# ---------------------------------------------------------------------------

_KNOWN_LOGGERS: tuple[tuple[str, str, str], ...] = (
    ("git_remote_rpc", "Root logger for all git-remote-rpc output", "Enable to see all logging"),
    ("git_remote_rpc.server", "Server connection lifecycle", "Debug rejected streams and failing commands"),
    ("git_remote_rpc.access", "One structured record per completed session", "Monitor traffic and errors"),
    ("git_remote_rpc.client", "Remote helper lifecycle", "Debug connection setup from the git side"),
    ("git_remote_rpc.relay", "Duplex byte relay", "Debug sessions that hang at end of data"),
    ("git_remote_rpc.subprocess", "Backing command spawn and exit", "Debug git-upload-pack/git-receive-pack runs"),
    ("git_remote_rpc.subprocess.stderr", "Backing command stderr lines", "See what the command printed"),
    ("git_remote_rpc.wire.stream", "Per-frame traffic", "Debug bytes lost or reordered"),
    ("git_remote_rpc.wire.transport", "Pipe and socket lifecycle", "Debug connection hangs or resets"),
)

_KNOWN_LOGGER_NAMES: frozenset[str] = frozenset(name for name, _, _ in _KNOWN_LOGGERS)


class LogLevel(StrEnum):
    """Log levels accepted on the command line."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class LogFormat(StrEnum):
    """Log output format."""

    text = "text"
    json = "json"


# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------


def _configure_logging(level: LogLevel | None, fmt: LogFormat, loggers: list[str] | None) -> None:
    """Attach a stderr handler to the target loggers at the requested level."""
    if level is None:
        return

    handler = logging.StreamHandler(sys.stderr)
    if fmt == LogFormat.json:
        from git_remote_rpc.logging_utils import TunnelJsonFormatter

        handler.setFormatter(TunnelJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(name)-30s %(levelname)-5s %(message)s"))

    numeric_level = logging.getLevelNamesMapping()[level.value]
    for name in loggers or ["git_remote_rpc"]:
        if name not in _KNOWN_LOGGER_NAMES:
            typer.echo(f"Warning: unknown logger '{name}'", err=True)
        logger = logging.getLogger(name)
        logger.setLevel(numeric_level)
        logger.addHandler(handler)


def _log_to_stderr(msg: Message) -> None:
    """Write a server log message to stderr."""
    sys.stderr.write(f"[{msg.level.value}] {msg.message}\n")
    sys.stderr.flush()


# ---------------------------------------------------------------------------
# git-remote-rpc
# ---------------------------------------------------------------------------

helper_app = typer.Typer(
    name="git-remote-rpc",
    help="git remote helper for rpc:// remotes.",
    add_completion=False,
)


@helper_app.command()
def helper(
    remote: Annotated[str, typer.Argument(help="Remote name, or the URL when no URL follows")],
    url: Annotated[str | None, typer.Argument(help="Remote URL (rpc://host[:port]/path)")] = None,
    log_level: Annotated[LogLevel | None, typer.Option("--log-level", help="Enable logging at this level")] = None,
    log_format: Annotated[LogFormat, typer.Option("--log-format", help="Log output format")] = LogFormat.text,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show server log messages on stderr")] = False,
) -> None:
    """Serve git's remote-helper protocol on stdin/stdout."""
    _configure_logging(log_level, log_format, None)
    try:
        run_helper(url if url is not None else remote, on_log=_log_to_stderr if verbose else None)
    except (TunnelError, OSError) as e:
        typer.echo(f"git-remote-rpc: {e}", err=True)
        raise typer.Exit(1) from None


# ---------------------------------------------------------------------------
# git-rpc-server
# ---------------------------------------------------------------------------

server_app = typer.Typer(
    name="git-rpc-server",
    help="Serve git repositories to git-remote-rpc clients.",
    add_completion=False,
)


@server_app.command()
def server(
    addr: Annotated[
        str, typer.Option("--addr", envvar="GIT_RPC_SERVER_ADDR", help="Listen address (HOST:PORT)")
    ] = DEFAULT_LISTEN_ADDR,
    root: Annotated[
        Path | None,
        typer.Option(
            "--root",
            envvar="GIT_RPC_SERVER_ROOT",
            help="Serve only repositories under this directory",
            file_okay=False,
            exists=True,
        ),
    ] = None,
    allow: Annotated[
        list[str] | None,
        typer.Option("--allow", help="Permit only these services (repeatable)"),
    ] = None,
    max_connections: Annotated[
        int | None, typer.Option("--max-connections", min=1, help="Limit concurrent sessions")
    ] = None,
    log_level: Annotated[LogLevel | None, typer.Option("--log-level", help="Enable logging at this level")] = None,
    log_format: Annotated[LogFormat, typer.Option("--log-format", help="Log output format")] = LogFormat.text,
    log_logger: Annotated[
        list[str] | None,
        typer.Option("--log-logger", help="Logger to configure (repeatable, default git_remote_rpc)"),
    ] = None,
) -> None:
    """Accept tunnel connections and run the requested git services."""
    _configure_logging(log_level, log_format, log_logger)
    try:
        host, port = parse_listen_address(addr)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--addr") from None
    try:
        config = ServerConfig(
            host=host,
            port=port,
            allowed_services=frozenset(allow) if allow else DEFAULT_ALLOWED_SERVICES,
            repository_root=root.resolve() if root is not None else None,
            max_connections=max_connections,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e)) from None

    try:
        serve_tcp(config.build_server(), config.host, config.port, max_connections=config.max_connections)
    except OSError as e:
        typer.echo(f"git-rpc-server: {e}", err=True)
        raise typer.Exit(1) from None


def helper_main() -> None:
    """Console-script entry point for ``git-remote-rpc``."""
    helper_app()


def server_main() -> None:
    """Console-script entry point for ``git-rpc-server``."""
    server_app()
