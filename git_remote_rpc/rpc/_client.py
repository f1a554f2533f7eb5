# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Client side: the git remote-helper control channel and stream establishment.

git starts the helper as ``git-remote-rpc <remote> <url>`` and talks to it
over stdin/stdout:

    git    > capabilities
    helper < *connect
    helper <
    git    > connect git-upload-pack
    helper <                          (connection established)
    ...raw pack protocol in both directions...

After the connect reply the helper's stdin and stdout belong to the relay.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from typing import BinaryIO, TypeAlias

from git_remote_rpc.log import Message
from git_remote_rpc.rpc._common import ControlChannelError, UnsupportedCommand, _client_logger
from git_remote_rpc.rpc._relay import channel_endpoint, relay, stdio_endpoint, write_all
from git_remote_rpc.rpc._transport import RemoteAddress, RpcTransport, dial_tcp, parse_remote_address
from git_remote_rpc.rpc._types import Capabilities, Connect, StreamMetadata, Unrecognized, parse_control_line
from git_remote_rpc.rpc._wire import FrameChannel

CAPABILITIES_REPLY = b"*connect\n\n"
CONNECTED_REPLY = b"\n"

Dialer: TypeAlias = Callable[[RemoteAddress], RpcTransport]


def dial(address: RemoteAddress) -> RpcTransport:
    """Default dialer: a TCP connection to the address's endpoint."""
    return dial_tcp(address.host, address.port)


def open_stream(
    transport: RpcTransport,
    metadata: StreamMetadata,
    *,
    on_log: Callable[[Message], None] | None = None,
) -> FrameChannel:
    """Open the client stream on *transport*, attaching *metadata*.

    Raises:
        TransportError: If the stream header cannot be sent.

    """
    channel = FrameChannel(transport, on_log=on_log)
    channel.open_send(metadata.to_arrow())
    return channel


def read_control_line(stdin: BinaryIO) -> str:
    """Read one newline-terminated control line and return it without the newline.

    Raises:
        ControlChannelError: On a read failure or end of input.
        UnsupportedCommand: If the line is not valid UTF-8.

    """
    try:
        raw = stdin.readline()
    except OSError as exc:
        raise ControlChannelError(f"unexpected error reading stdin: {exc}") from exc
    if not raw.endswith(b"\n"):
        raise ControlChannelError("unexpected error reading stdin: EOF")
    try:
        return raw[:-1].decode("utf-8")
    except UnicodeDecodeError as exc:
        raise UnsupportedCommand(raw[:-1].decode("utf-8", errors="replace")) from exc


def connect(
    url: str,
    service: str,
    stdin: BinaryIO,
    stdout: BinaryIO,
    *,
    dialer: Dialer = dial,
    on_log: Callable[[Message], None] | None = None,
) -> None:
    """Open a stream for *service* and relay stdin/stdout over it until done.

    *stdin* must be the same buffered reader the control lines came from, so
    that input git sent right after the connect line is not lost.
    """
    address = parse_remote_address(url)
    _client_logger.debug("connecting to %s for %s %s", address.endpoint, service, address.repository)
    transport = dialer(address)
    try:
        channel = open_stream(transport, StreamMetadata(service=service, repository=address.repository), on_log=on_log)
        write_all(stdout, CONNECTED_REPLY)
        relay(stdio_endpoint(stdin, stdout), channel_endpoint(channel))
        if _client_logger.isEnabledFor(logging.DEBUG):
            _client_logger.debug(
                "session done: sent %d bytes in %d frames, received %d bytes in %d frames",
                channel.bytes_out,
                channel.frames_out,
                channel.bytes_in,
                channel.frames_in,
            )
    finally:
        transport.close()


def run_helper(
    url: str,
    stdin: BinaryIO | None = None,
    stdout: BinaryIO | None = None,
    *,
    dialer: Dialer = dial,
    on_log: Callable[[Message], None] | None = None,
) -> None:
    """Answer git's control commands until ``connect``, then relay.

    Raises:
        ControlChannelError: If stdin cannot be read or ends early.
        UnsupportedCommand: On any command other than ``capabilities`` / ``connect``.
        TransportError: If the stream cannot be established or fails.
        RpcError: If the server rejects the stream or the backing command fails.

    """
    stdin = stdin if stdin is not None else sys.stdin.buffer
    stdout = stdout if stdout is not None else sys.stdout.buffer
    while True:
        match parse_control_line(read_control_line(stdin)):
            case Capabilities():
                write_all(stdout, CAPABILITIES_REPLY)
            case Connect(service=service):
                connect(url, service, stdin, stdout, dialer=dialer, on_log=on_log)
                return
            case Unrecognized(line=line):
                raise UnsupportedCommand(line)
