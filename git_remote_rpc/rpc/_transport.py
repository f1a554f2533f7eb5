"""Transport protocol, implementations, and remote address parsing."""

from __future__ import annotations

import contextlib
import logging
import os
import socket
import time
from dataclasses import dataclass
from io import IOBase
from typing import Protocol, runtime_checkable
from urllib.parse import urlsplit

from git_remote_rpc.rpc._common import DEFAULT_PORT, TransportError
from git_remote_rpc.rpc._debug import wire_transport_logger

# ---------------------------------------------------------------------------
# RpcTransport protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class RpcTransport(Protocol):
    """Bidirectional byte stream transport."""

    @property
    def reader(self) -> IOBase:
        """Readable binary stream."""
        ...

    @property
    def writer(self) -> IOBase:
        """Writable binary stream."""
        ...

    def close(self) -> None:
        """Close the transport."""
        ...


# ---------------------------------------------------------------------------
# PipeTransport + make_pipe_pair
# ---------------------------------------------------------------------------


class PipeTransport:
    """Transport backed by file-like IO streams (e.g. from os.pipe())."""

    __slots__ = ("_reader", "_writer")

    def __init__(self, reader: IOBase, writer: IOBase) -> None:
        """Initialize with reader and writer streams."""
        self._reader = reader
        self._writer = writer

    @property
    def reader(self) -> IOBase:
        """Readable binary stream."""
        return self._reader

    @property
    def writer(self) -> IOBase:
        """Writable binary stream."""
        return self._writer

    def close(self) -> None:
        """Close both streams."""
        with contextlib.suppress(OSError):
            self._writer.close()
        self._reader.close()


def make_pipe_pair() -> tuple[PipeTransport, PipeTransport]:
    """Create connected client/server transports using os.pipe().

    Returns (client_transport, server_transport).
    """
    c2s_r, c2s_w = os.pipe()
    s2c_r, s2c_w = os.pipe()
    if wire_transport_logger.isEnabledFor(logging.DEBUG):
        wire_transport_logger.debug(
            "make_pipe_pair: c2s=(%d,%d), s2c=(%d,%d)",
            c2s_r,
            c2s_w,
            s2c_r,
            s2c_w,
        )
    client = PipeTransport(
        os.fdopen(s2c_r, "rb"),
        os.fdopen(c2s_w, "wb", buffering=0),
    )
    server = PipeTransport(
        os.fdopen(c2s_r, "rb"),
        os.fdopen(s2c_w, "wb", buffering=0),
    )
    return client, server


# ---------------------------------------------------------------------------
# SocketTransport
# ---------------------------------------------------------------------------


class SocketTransport:
    """Transport over a connected stream socket.

    The reader is buffered so that Arrow IPC gets exactly the bytes it asks
    for.  The writer is buffered too; the frame channel flushes after every
    message.  ``close()`` shuts the socket down first, which unblocks any
    thread still waiting in ``recv``.
    """

    __slots__ = ("_closed", "_reader", "_sock", "_writer")

    def __init__(self, sock: socket.socket) -> None:
        """Wrap a connected socket."""
        self._sock = sock
        self._reader: IOBase = sock.makefile("rb")
        self._writer: IOBase = sock.makefile("wb")
        self._closed = False

    @property
    def reader(self) -> IOBase:
        """Readable binary stream."""
        return self._reader

    @property
    def writer(self) -> IOBase:
        """Writable binary stream."""
        return self._writer

    @property
    def peer(self) -> str:
        """Remote address as ``host:port`` (empty if unknown)."""
        try:
            peer = self._sock.getpeername()
        except OSError:
            return ""
        if isinstance(peer, tuple):
            return f"{peer[0]}:{peer[1]}"
        return str(peer)

    def close(self, *, linger: float = 0.0) -> None:
        """Flush, shut down and close the socket.

        With *linger*, the write side is shut down first and incoming bytes
        are discarded until the peer closes (or *linger* seconds pass).
        """
        if self._closed:
            return
        self._closed = True
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug("SocketTransport closing: fd=%d, linger=%.1f", self._sock.fileno(), linger)
        with contextlib.suppress(OSError, ValueError):
            self._writer.close()
        if linger > 0:
            self._drain(linger)
        with contextlib.suppress(OSError):
            self._sock.shutdown(socket.SHUT_RDWR)
        with contextlib.suppress(OSError, ValueError):
            self._reader.close()
        self._sock.close()

    def _drain(self, timeout: float) -> None:
        deadline = time.monotonic() + timeout
        try:
            self._sock.shutdown(socket.SHUT_WR)
            while (remaining := deadline - time.monotonic()) > 0:
                self._sock.settimeout(remaining)
                if not self._sock.recv(65536):
                    break
        except OSError:
            # Includes TimeoutError; the peer did not close in time.
            pass


def make_socket_pair() -> tuple[SocketTransport, SocketTransport]:
    """Create connected client/server transports using ``socket.socketpair()``.

    Returns (client_transport, server_transport).
    """
    client_sock, server_sock = socket.socketpair()
    return SocketTransport(client_sock), SocketTransport(server_sock)


# ---------------------------------------------------------------------------
# Remote address
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RemoteAddress:
    """A parsed remote URL of the form ``scheme://host[:port]/path``.

    Attributes:
        host: Transport endpoint host.
        port: Transport endpoint port.
        repository: The URL path with its leading ``/`` stripped.

    """

    host: str
    port: int
    repository: str

    @property
    def endpoint(self) -> str:
        """``host:port`` for display."""
        return f"{self.host}:{self.port}"


def parse_remote_address(url: str) -> RemoteAddress:
    """Parse a remote URL into endpoint and repository identifier.

    Raises:
        TransportError: If the URL has no host or an invalid port.

    """
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as exc:
        raise TransportError(f"parsing remote address {url!r}", exc) from exc
    if not parts.hostname:
        raise TransportError(f"parsing remote address {url!r}: no host given")
    return RemoteAddress(
        host=parts.hostname,
        port=port if port is not None else DEFAULT_PORT,
        repository=parts.path.removeprefix("/"),
    )


def dial_tcp(host: str, port: int, *, timeout: float | None = 30.0) -> SocketTransport:
    """Connect to a TCP endpoint and return a transport.

    *timeout* bounds connection establishment only; the connected socket is
    switched back to blocking mode.

    Raises:
        TransportError: If the connection cannot be established.

    """
    try:
        sock = socket.create_connection((host, port), timeout=timeout)
    except OSError as exc:
        raise TransportError(f"dial {host}:{port}", exc) from exc
    sock.settimeout(None)
    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    if wire_transport_logger.isEnabledFor(logging.DEBUG):
        wire_transport_logger.debug("dial_tcp: connected to %s:%d, fd=%d", host, port, sock.fileno())
    return SocketTransport(sock)
