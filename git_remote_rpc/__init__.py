# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""git remote helper that tunnels git's pack protocol over Arrow IPC streams."""

import logging

from git_remote_rpc.config import ServerConfig, parse_listen_address
from git_remote_rpc.log import Level, Message
from git_remote_rpc.metadata import REQUEST_VERSION
from git_remote_rpc.rpc import (
    DEFAULT_ALLOWED_SERVICES,
    DEFAULT_PORT,
    ControlChannelError,
    FrameChannel,
    InvalidMetadata,
    PipeTransport,
    RepositoryNotPermitted,
    RepositoryPolicy,
    RpcError,
    ServiceFailed,
    ServiceNotPermitted,
    ServiceValidator,
    SocketTransport,
    StatusCode,
    SubprocessExecutor,
    TransportError,
    TunnelError,
    TunnelServer,
    TunnelTCPServer,
    UnsupportedCommand,
    ValidationError,
    make_pipe_pair,
    run_helper,
    serve_tcp,
)

__all__ = [
    "DEFAULT_ALLOWED_SERVICES",
    "DEFAULT_PORT",
    "REQUEST_VERSION",
    "ControlChannelError",
    "FrameChannel",
    "InvalidMetadata",
    "Level",
    "Message",
    "PipeTransport",
    "RepositoryNotPermitted",
    "RepositoryPolicy",
    "RpcError",
    "ServerConfig",
    "ServiceFailed",
    "ServiceNotPermitted",
    "ServiceValidator",
    "SocketTransport",
    "StatusCode",
    "SubprocessExecutor",
    "TransportError",
    "TunnelError",
    "TunnelServer",
    "TunnelTCPServer",
    "UnsupportedCommand",
    "ValidationError",
    "make_pipe_pair",
    "parse_listen_address",
    "run_helper",
    "serve_tcp",
]

# Attach NullHandler to the root logger so library users don't get
# "No handler found" warnings.
logging.getLogger("git_remote_rpc").addHandler(logging.NullHandler())
