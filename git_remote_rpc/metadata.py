"""Shared helpers for ``pa.KeyValueMetadata`` used across the tunnel.

Centralises the well-known metadata keys (including the wire-protocol
version constant ``REQUEST_VERSION``), encoding, and lookup that keeps
repeated keys apart.
"""

from __future__ import annotations

import pyarrow as pa

__all__ = [
    "LOG_EXTRA_KEY",
    "LOG_LEVEL_KEY",
    "LOG_MESSAGE_KEY",
    "REPOSITORY_KEY",
    "REQUEST_VERSION",
    "REQUEST_VERSION_KEY",
    "SERVICE_KEY",
    "STREAM_END_KEY",
    "encode_metadata",
    "get_all",
]

# ---------------------------------------------------------------------------
# Well-known metadata keys (bytes, matching what appears on the wire)
# ---------------------------------------------------------------------------

# Stream establishment (on the open batch of the client -> server stream)
SERVICE_KEY = b"service"
REPOSITORY_KEY = b"repository"
REQUEST_VERSION_KEY = b"git_remote_rpc.request_version"
REQUEST_VERSION = b"1"

# Explicit end of data (zero-row batch written just before the IPC EOS marker)
STREAM_END_KEY = b"git_remote_rpc.end_of_data"

# Log / error batches (zero-row batches on either stream)
LOG_LEVEL_KEY = b"git_remote_rpc.log_level"
LOG_MESSAGE_KEY = b"git_remote_rpc.log_message"
LOG_EXTRA_KEY = b"git_remote_rpc.log_extra"

# ---------------------------------------------------------------------------
# Encoding and lookup
# ---------------------------------------------------------------------------


def encode_metadata(metadata: dict[str, str]) -> pa.KeyValueMetadata:
    """Encode a plain ``dict[str, str]`` to ``pa.KeyValueMetadata`` with bytes keys/values."""
    return pa.KeyValueMetadata({k.encode(): v.encode() for k, v in metadata.items()})


def get_all(metadata: pa.KeyValueMetadata, key: bytes) -> list[bytes]:
    """Return every value stored under *key*, in wire order (possibly empty)."""
    values: list[bytes] = []
    for k, v in metadata.items():
        k_bytes = k if isinstance(k, bytes) else k.encode()
        if k_bytes == key:
            values.append(v if isinstance(v, bytes) else v.encode())
    return values
