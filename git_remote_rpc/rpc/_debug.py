"""Debug logging infrastructure for wire protocol diagnostics.

Provides logger instances under the ``git_remote_rpc.wire.*`` hierarchy and
formatting helpers.  Enabling
``logging.getLogger("git_remote_rpc.wire").setLevel(logging.DEBUG)`` shows
every frame and every transport lifecycle event.

All formatting helpers return ``str`` and never log directly.  Call them
inside ``isEnabledFor`` guards.
"""

from __future__ import annotations

import logging

import pyarrow as pa

# ---------------------------------------------------------------------------
# Logger hierarchy: git_remote_rpc.wire.*
# ---------------------------------------------------------------------------

wire_stream_logger = logging.getLogger("git_remote_rpc.wire.stream")
"""Stream open/close and per-frame traffic."""

wire_transport_logger = logging.getLogger("git_remote_rpc.wire.transport")
"""Transport lifecycle (pipe, socket)."""

# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

_MAX_VALUE_LEN = 80
"""Maximum length for individual values in fmt_metadata / fmt_payload."""


def fmt_metadata(metadata: pa.KeyValueMetadata | None) -> str:
    """Format Arrow custom metadata compactly.

    Returns:
        ``"{service='git-upload-pack', repository='repo.git'}"``
        or ``"None"`` when metadata is absent.

    """
    if metadata is None:
        return "None"
    parts: list[str] = []
    for k, v in metadata.items():
        key = k.decode("utf-8", errors="replace") if isinstance(k, bytes) else k
        val = v.decode("utf-8", errors="replace") if isinstance(v, bytes) else v
        if len(val) > _MAX_VALUE_LEN:
            val = val[:_MAX_VALUE_LEN] + "..."
        parts.append(f"{key}={val!r}")
    return "{" + ", ".join(parts) + "}"


def fmt_payload(data: bytes) -> str:
    """Format a frame payload as its length plus a truncated preview."""
    preview = repr(data[:_MAX_VALUE_LEN])
    if len(data) > _MAX_VALUE_LEN:
        preview += "..."
    return f"{len(data)} bytes {preview}"
