# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Byte-exact duplex tunnel over Arrow IPC streams.

A local process (the git remote helper) drives a server-side subprocess as if
it were attached to the helper's stdin/stdout.

Wire Protocol
-------------
One transport connection carries one session.  Each direction is a single
IPC stream with schema ``data: binary``::

    Client→Server: [schema + open batch + data batch* + end-of-data batch + EOS]
    Server→Client: [schema + data batch* + (end-of-data batch | error batch) + EOS]

- The **open batch** is zero-row; its custom metadata carries ``service``,
  ``repository`` and ``git_remote_rpc.request_version``.
- A **data batch** has one row; its payload is one frame.  Frame boundaries
  carry no meaning.
- The **end-of-data batch** (``git_remote_rpc.end_of_data``) is the half-close.
  A stream that stops without it has failed.
- **Error and log batches** are zero-row with ``git_remote_rpc.log_level``,
  ``git_remote_rpc.log_message`` and ``git_remote_rpc.log_extra``.  At
  EXCEPTION level the client raises :class:`RpcError`; other levels go to the
  ``on_log`` callback.

Server Side
-----------
:class:`ServiceValidator` checks the open batch (exact allow-list membership,
repository policy) before :class:`SubprocessExecutor` runs the backing
command with its stdin fed from the client stream and its stdout sent back.
Its stderr is captured and returned only if it exits non-zero.
"""

from git_remote_rpc.rpc._adapter import ChannelReader, ChannelWriter
from git_remote_rpc.rpc._client import (
    CAPABILITIES_REPLY,
    CONNECTED_REPLY,
    Dialer,
    connect,
    dial,
    open_stream,
    read_control_line,
    run_helper,
)
from git_remote_rpc.rpc._common import (
    DATA_SCHEMA,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_PORT,
    ControlChannelError,
    InvalidMetadata,
    RepositoryNotPermitted,
    RpcError,
    ServiceFailed,
    ServiceNotPermitted,
    StatusCode,
    TransportError,
    TunnelError,
    UnsupportedCommand,
    ValidationError,
)
from git_remote_rpc.rpc._executor import SubprocessExecutor
from git_remote_rpc.rpc._relay import (
    Endpoint,
    channel_endpoint,
    pump,
    read_chunk,
    relay,
    stdio_endpoint,
    write_all,
)
from git_remote_rpc.rpc._server import (
    TunnelServer,
    TunnelTCPServer,
    serve_tcp,
)
from git_remote_rpc.rpc._transport import (
    PipeTransport,
    RemoteAddress,
    RpcTransport,
    SocketTransport,
    dial_tcp,
    make_pipe_pair,
    make_socket_pair,
    parse_remote_address,
)
from git_remote_rpc.rpc._types import (
    Capabilities,
    Connect,
    ControlCommand,
    StreamMetadata,
    Unrecognized,
    ValidatedRequest,
    parse_control_line,
)
from git_remote_rpc.rpc._validator import (
    DEFAULT_ALLOWED_SERVICES,
    RECEIVE_PACK,
    UPLOAD_PACK,
    RepositoryPolicy,
    ServiceValidator,
)
from git_remote_rpc.rpc._wire import (
    ChannelError,
    ChannelResult,
    Data,
    EndOfData,
    FrameChannel,
)

__all__ = [
    "CAPABILITIES_REPLY",
    "CONNECTED_REPLY",
    "DATA_SCHEMA",
    "DEFAULT_ALLOWED_SERVICES",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_PORT",
    "RECEIVE_PACK",
    "UPLOAD_PACK",
    "Capabilities",
    "ChannelError",
    "ChannelReader",
    "ChannelResult",
    "ChannelWriter",
    "Connect",
    "ControlChannelError",
    "ControlCommand",
    "Data",
    "Dialer",
    "EndOfData",
    "Endpoint",
    "FrameChannel",
    "InvalidMetadata",
    "PipeTransport",
    "RemoteAddress",
    "RepositoryNotPermitted",
    "RepositoryPolicy",
    "RpcError",
    "RpcTransport",
    "ServiceFailed",
    "ServiceNotPermitted",
    "ServiceValidator",
    "SocketTransport",
    "StatusCode",
    "StreamMetadata",
    "SubprocessExecutor",
    "TransportError",
    "TunnelError",
    "TunnelServer",
    "TunnelTCPServer",
    "Unrecognized",
    "UnsupportedCommand",
    "ValidatedRequest",
    "ValidationError",
    "channel_endpoint",
    "connect",
    "dial",
    "dial_tcp",
    "make_pipe_pair",
    "make_socket_pair",
    "open_stream",
    "parse_control_line",
    "parse_remote_address",
    "pump",
    "read_chunk",
    "read_control_line",
    "relay",
    "run_helper",
    "serve_tcp",
    "stdio_endpoint",
    "write_all",
]
