# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""JSON formatter for ``git-rpc-server --log-format json``.

One line per record.  Every record carries ``timestamp`` (UTC, ISO 8601 with
milliseconds), ``level``, ``logger``, ``thread`` and ``message``.  The server
runs each session on its own thread, so ``thread`` ties together the lines
of one session.

Access records (``git_remote_rpc.access``) put the session fields first, in
a fixed order::

    {"timestamp": "...", "level": "INFO", "logger": "git_remote_rpc.access",
     "thread": "...", "message": "git-upload-pack repo.git ok",
     "server_id": "...", "service": "git-upload-pack", "repository": "repo.git",
     "remote_addr": "127.0.0.1:51234", "status": "ok", ...}

Any other ``extra`` fields follow.  This module is **not** auto-imported by
``git_remote_rpc``; import it explicitly::

    from git_remote_rpc.logging_utils import TunnelJsonFormatter
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime

__all__ = ["SESSION_FIELDS", "TunnelJsonFormatter"]

# Attribute names that every LogRecord has by default.  Anything *not* in
# this set was injected via ``extra``.
_DEFAULT_RECORD_ATTRS: frozenset[str] = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()) | {
    "message",
    "asctime",
}

_RESERVED_KEYS: frozenset[str] = frozenset(
    {"timestamp", "level", "logger", "thread", "message", "exception", "stack_info"}
)

SESSION_FIELDS: tuple[str, ...] = (
    "server_id",
    "service",
    "repository",
    "remote_addr",
    "status",
    "error_type",
    "returncode",
    "duration_ms",
    "frames_in",
    "frames_out",
    "bytes_in",
    "bytes_out",
)
"""Access-log fields, in output order."""


def _jsonable(value: object) -> object:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class TunnelJsonFormatter(logging.Formatter):
    """Render records as single-line JSON with session fields in a stable order.

    Extras cannot overwrite the standard fields.  Exception information goes
    under ``"exception"``; values JSON cannot represent are rendered with
    ``str``.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a single-line JSON string."""
        record.message = record.getMessage()
        obj: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.message,
        }
        extras = {
            k: _jsonable(v)
            for k, v in record.__dict__.items()
            if k not in _DEFAULT_RECORD_ATTRS and k not in _RESERVED_KEYS
        }
        for name in SESSION_FIELDS:
            if name in extras:
                obj[name] = extras.pop(name)
        obj.update(extras)
        if record.exc_info and record.exc_info[1]:
            obj["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            obj["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(obj, default=str)
