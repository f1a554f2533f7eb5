"""Tunnel server: validate each stream, run its backing command, report the outcome."""

from __future__ import annotations

import contextlib
import logging
import socketserver
import threading
import time
import uuid
from typing import Literal

from git_remote_rpc.rpc._common import (
    ServiceFailed,
    TransportError,
    ValidationError,
    _access_logger,
    _logger,
)
from git_remote_rpc.rpc._executor import SubprocessExecutor
from git_remote_rpc.rpc._transport import RpcTransport, SocketTransport
from git_remote_rpc.rpc._types import ValidatedRequest
from git_remote_rpc.rpc._validator import ServiceValidator
from git_remote_rpc.rpc._wire import FrameChannel

# ---------------------------------------------------------------------------
# Server helpers
# ---------------------------------------------------------------------------


def _emit_access_log(
    server_id: str,
    request: ValidatedRequest | None,
    remote_addr: str,
    channel: FrameChannel,
    duration_ms: float,
    status: Literal["ok", "error"],
    error_type: str = "",
    returncode: int | None = None,
) -> None:
    """Emit a structured access log record for a finished session."""
    if not _access_logger.isEnabledFor(logging.INFO):
        return
    extra: dict[str, object] = {
        "server_id": server_id,
        "service": request.service if request is not None else "",
        "repository": request.repository if request is not None else "",
        "remote_addr": remote_addr,
        "duration_ms": round(duration_ms, 2),
        "status": status,
        "error_type": error_type,
        "frames_in": channel.frames_in,
        "frames_out": channel.frames_out,
        "bytes_in": channel.bytes_in,
        "bytes_out": channel.bytes_out,
    }
    if returncode is not None:
        extra["returncode"] = returncode
    _access_logger.info(
        "%s %s %s",
        extra["service"] or "-",
        extra["repository"] or "-",
        status,
        extra=extra,
    )


def _report(channel: FrameChannel, exc: BaseException) -> None:
    """Send *exc* to the client if the connection still allows it."""
    try:
        channel.fail(exc)
    except TransportError:
        _logger.debug("could not report %s to client", type(exc).__name__, exc_info=True)


# ---------------------------------------------------------------------------
# TunnelServer
# ---------------------------------------------------------------------------


class TunnelServer:
    """Serves one tunnel session per transport."""

    __slots__ = ("_executor", "_server_id", "_validator")

    def __init__(
        self,
        validator: ServiceValidator | None = None,
        executor: SubprocessExecutor | None = None,
        *,
        server_id: str | None = None,
    ) -> None:
        """Initialize with a validator and an executor (defaults for both)."""
        self._validator = validator if validator is not None else ServiceValidator()
        self._executor = executor if executor is not None else SubprocessExecutor()
        self._server_id = server_id if server_id is not None else uuid.uuid4().hex[:12]

    @property
    def validator(self) -> ServiceValidator:
        """The service validator."""
        return self._validator

    @property
    def executor(self) -> SubprocessExecutor:
        """The subprocess executor."""
        return self._executor

    @property
    def server_id(self) -> str:
        """Short random identifier of this server instance, used in logs."""
        return self._server_id

    def handle(self, transport: RpcTransport, *, remote_addr: str = "") -> None:
        """Serve a single session over *transport*.

        Every failure is reported to the client where possible and logged;
        nothing propagates to the caller.  The transport is left open.
        """
        channel = FrameChannel(transport)
        request: ValidatedRequest | None = None
        status: Literal["ok", "error"] = "error"
        error_type = ""
        returncode: int | None = None
        start = time.monotonic()
        extra = {"server_id": self._server_id, "remote_addr": remote_addr}
        try:
            try:
                request = self._validator.validate(channel.accept())
            except ValidationError as exc:
                error_type = type(exc).__name__
                _logger.warning("rejected stream: %s", exc, extra=extra)
                _report(channel, exc)
                return
            returncode = self._executor.run(request, channel)
            channel.close_send()
            status = "ok"
        except ServiceFailed as exc:
            error_type = type(exc).__name__
            returncode = exc.returncode
            _logger.error("%s", exc, extra={**extra, "service": exc.service})
            _report(channel, exc)
        except TransportError as exc:
            error_type = type(exc).__name__
            _logger.warning("session aborted: %s", exc, extra=extra)
        except Exception as exc:
            error_type = type(exc).__name__
            _logger.error("unexpected error in session: %s", exc, exc_info=True, extra=extra)
            _report(channel, exc)
        finally:
            _emit_access_log(
                self._server_id,
                request,
                remote_addr,
                channel,
                (time.monotonic() - start) * 1000,
                status,
                error_type,
                returncode,
            )


# ---------------------------------------------------------------------------
# TCP listener
# ---------------------------------------------------------------------------


_LINGER_SECONDS = 5.0


class _TunnelRequestHandler(socketserver.BaseRequestHandler):
    server: TunnelTCPServer

    def handle(self) -> None:
        transport = SocketTransport(self.request)
        remote_addr = transport.peer
        _logger.debug("connection from %s", remote_addr)
        try:
            self.server.tunnel.handle(transport, remote_addr=remote_addr)
        finally:
            transport.close(linger=_LINGER_SECONDS)


class TunnelTCPServer(socketserver.ThreadingTCPServer):
    """Threaded TCP listener: one thread, and one session, per connection.

    With *max_connections*, connections beyond the limit are accepted but
    wait for a free slot before their session starts.
    """

    daemon_threads = True
    allow_reuse_address = True

    def __init__(
        self,
        address: tuple[str, int],
        tunnel: TunnelServer,
        *,
        max_connections: int | None = None,
    ) -> None:
        """Bind and listen on *address*."""
        self.tunnel = tunnel
        self._slots = threading.BoundedSemaphore(max_connections) if max_connections else None
        super().__init__(address, _TunnelRequestHandler)

    @property
    def address(self) -> str:
        """Bound ``host:port``."""
        host, port = self.server_address[:2]
        return f"{host}:{port}"

    def process_request_thread(self, request, client_address) -> None:  # type: ignore[no-untyped-def]
        """Run one session, holding a connection slot when a limit is set."""
        if self._slots is None:
            super().process_request_thread(request, client_address)
            return
        with self._slots:
            super().process_request_thread(request, client_address)


def serve_tcp(
    tunnel: TunnelServer,
    host: str,
    port: int,
    *,
    max_connections: int | None = None,
) -> None:
    """Serve tunnel sessions on ``host:port`` until interrupted."""
    with TunnelTCPServer((host, port), tunnel, max_connections=max_connections) as srv:
        _logger.info("listening on %s", srv.address, extra={"server_id": tunnel.server_id})
        with contextlib.suppress(KeyboardInterrupt):
            srv.serve_forever()
