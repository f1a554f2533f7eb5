"""IPC utility functions shared by the client and server streams.

KEY FUNCTIONS
-------------
empty_batch(schema) : Zero-row batch used for open, log and error batches
ipc_trace(event, **fields) : structlog frame tracing, enabled with
    ``GIT_REMOTE_RPC_IPC_DEBUG=1``

"""

from __future__ import annotations

import os
import sys

import pyarrow as pa
import structlog

__all__ = [
    "empty_batch",
    "ipc_trace",
]

# IPC frame tracing - enable with GIT_REMOTE_RPC_IPC_DEBUG=1
_IPC_DEBUG = os.environ.get("GIT_REMOTE_RPC_IPC_DEBUG", "").lower() in ("1", "true", "yes")
_ipc_log: structlog.stdlib.BoundLogger | None = None


def _get_ipc_log() -> structlog.stdlib.BoundLogger:
    """Get or create the IPC trace logger, configured to write to stderr.

    stdout belongs to git when running as a remote helper, so the trace must
    never go there.
    """
    global _ipc_log
    if _ipc_log is None:
        structlog.configure(
            processors=[
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(0),
            logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        )
        _ipc_log = structlog.get_logger().bind(component="ipc", pid=os.getpid())
    return _ipc_log


def ipc_trace(event: str, **fields: object) -> None:
    """Emit one IPC trace event (no-op unless tracing is enabled)."""
    if _IPC_DEBUG:
        _get_ipc_log().debug(event, **fields)


def empty_batch(schema: pa.Schema) -> pa.RecordBatch:
    """Return an empty batch conforming to the schema."""
    return pa.RecordBatch.from_arrays(
        [pa.array([], type=field.type) for field in schema],
        schema=schema,
    )
