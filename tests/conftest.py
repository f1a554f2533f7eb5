"""Shared test fixtures for git-remote-rpc tests."""

from __future__ import annotations

import contextlib
import sys
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

import pyarrow as pa
import pytest

from git_remote_rpc.log import Message
from git_remote_rpc.rpc import (
    RECEIVE_PACK,
    UPLOAD_PACK,
    ChannelError,
    ChannelResult,
    Data,
    FrameChannel,
    RemoteAddress,
    RpcTransport,
    ServiceValidator,
    StreamMetadata,
    SubprocessExecutor,
    TunnelServer,
    TunnelTCPServer,
    make_pipe_pair,
)

# ---------------------------------------------------------------------------
# Stub backing commands (run as ``python -c SCRIPT <repository>``)
# ---------------------------------------------------------------------------

ECHO_SCRIPT = """
import sys
out = sys.stdout.buffer
while True:
    chunk = sys.stdin.buffer.read1(65536)
    if not chunk:
        break
    out.write(chunk)
    out.flush()
"""

FAIL_SCRIPT = """
import sys
sys.stderr.write("fatal: '" + sys.argv[1] + "' does not appear to be a git repository\\n")
sys.exit(128)
"""

ARGV_SCRIPT = """
import sys
sys.stdin.buffer.read()
sys.stdout.write(sys.argv[1])
"""

SLOW_ECHO_SCRIPT = """
import sys, time
data = sys.stdin.buffer.read()
time.sleep(0.3)
sys.stdout.buffer.write(data)
"""

CHATTY_SCRIPT = """
import sys
sys.stdout.buffer.write(sys.stdin.buffer.read())
sys.stderr.write("warning: serving a shallow mirror\\n")
"""


def stub(script: str) -> list[str]:
    """Command line running *script* with the current interpreter."""
    return [sys.executable, "-c", script]


def stub_commands(script: str) -> dict[str, list[str]]:
    """Route both default services to *script*."""
    return {UPLOAD_PACK: stub(script), RECEIVE_PACK: stub(script)}


def make_tunnel(script: str = ECHO_SCRIPT, **validator_kwargs: object) -> TunnelServer:
    """Build a server whose services all run *script*."""
    validator = ServiceValidator(**validator_kwargs)  # type: ignore[arg-type]
    return TunnelServer(validator, SubprocessExecutor(stub_commands(script)), server_id="test")


def open_metadata(service: str = UPLOAD_PACK, repository: str = "repo.git") -> pa.KeyValueMetadata:
    """Open-batch metadata as a well-behaved client sends it."""
    return StreamMetadata(service=service, repository=repository).to_arrow()


# ---------------------------------------------------------------------------
# Raw sessions over a pipe pair
# ---------------------------------------------------------------------------


@dataclass
class SessionResult:
    """What a client observed during one raw session."""

    received: bytes
    result: ChannelResult
    send_error: BaseException | None = None
    logs: list[Message] = field(default_factory=list)


def run_session(
    tunnel: TunnelServer,
    metadata: pa.KeyValueMetadata | None,
    frames: list[bytes] | None = None,
) -> SessionResult:
    """Drive one session against *tunnel* with a bare :class:`FrameChannel`.

    Frames are sent on a separate thread so that large payloads cannot fill
    both pipes at once.
    """
    client, server = make_pipe_pair()
    server_thread = threading.Thread(target=tunnel.handle, args=(server,), kwargs={"remote_addr": "pipe"}, daemon=True)
    server_thread.start()
    logs: list[Message] = []
    channel = FrameChannel(client, on_log=logs.append)
    errors: list[BaseException] = []

    def _send() -> None:
        try:
            channel.open_send(metadata)
            for frame in frames or []:
                channel.send(frame)
            channel.close_send()
        except Exception as exc:
            errors.append(exc)

    sender = threading.Thread(target=_send, daemon=True)
    sender.start()
    received = bytearray()
    while True:
        result = channel.recv()
        if not isinstance(result, Data):
            break
        received.extend(result.payload)
    server_thread.join(timeout=10)
    sender.join(timeout=10)
    assert not server_thread.is_alive(), "server did not finish the session"
    client.close()
    server.close()
    return SessionResult(bytes(received), result, errors[0] if errors else None, logs)


def remote_error(result: SessionResult) -> BaseException:
    """The error carried by a failed session."""
    assert isinstance(result.result, ChannelError), result.result
    return result.result.cause


# ---------------------------------------------------------------------------
# Dialers
# ---------------------------------------------------------------------------


@dataclass
class PipeDialer:
    """Dialer serving every connection in-process over a fresh pipe pair."""

    tunnel: TunnelServer
    addresses: list[RemoteAddress] = field(default_factory=list)
    threads: list[threading.Thread] = field(default_factory=list)

    def __call__(self, address: RemoteAddress) -> RpcTransport:
        """Connect to the in-process server."""
        self.addresses.append(address)
        client, server = make_pipe_pair()
        thread = threading.Thread(target=self._serve, args=(server,), daemon=True)
        thread.start()
        self.threads.append(thread)
        return client

    def _serve(self, server: RpcTransport) -> None:
        try:
            self.tunnel.handle(server, remote_addr="pipe")
        finally:
            server.close()

    def join(self) -> None:
        """Wait for every served session to finish."""
        for thread in self.threads:
            thread.join(timeout=10)


@pytest.fixture
def pipe_dialer() -> Callable[..., PipeDialer]:
    """Factory for in-process dialers backed by stub commands."""

    def factory(script: str = ECHO_SCRIPT, **validator_kwargs: object) -> PipeDialer:
        return PipeDialer(make_tunnel(script, **validator_kwargs))

    return factory


# ---------------------------------------------------------------------------
# TCP server
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def running_tcp_server(tunnel: TunnelServer, *, max_connections: int | None = None) -> Iterator[TunnelTCPServer]:
    """Serve *tunnel* on an ephemeral localhost port for the duration of the block."""
    srv = TunnelTCPServer(("127.0.0.1", 0), tunnel, max_connections=max_connections)
    thread = threading.Thread(target=srv.serve_forever, kwargs={"poll_interval": 0.05}, daemon=True)
    thread.start()
    try:
        yield srv
    finally:
        srv.shutdown()
        srv.server_close()
        thread.join(timeout=5)


@pytest.fixture
def echo_tcp_server() -> Iterator[TunnelTCPServer]:
    """A TCP tunnel server whose services echo their input."""
    with running_tcp_server(make_tunnel()) as srv:
        yield srv


def tcp_url(srv: TunnelTCPServer, repository: str = "repo.git") -> str:
    """``rpc://`` URL of *srv* for *repository*."""
    host, port = srv.server_address[:2]
    return f"rpc://{host}:{port}/{repository}"
