"""Duplex relay between a local byte endpoint and a remote one.

One session moves bytes in two independent directions:

- **upload**: ``local.reader`` to ``remote.writer``, on a daemon thread,
  finished by a half-close of the remote side;
- **download**: ``remote.reader`` to ``local.writer``, on the calling thread.

The download direction reaching end of data ends the session, but success is
only declared once the upload has also finished cleanly, so bytes still in
flight towards the remote are never dropped.
"""

from __future__ import annotations

import errno
import logging
import queue
import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import BinaryIO

from git_remote_rpc.rpc._adapter import ChannelReader, ChannelWriter
from git_remote_rpc.rpc._common import DEFAULT_CHUNK_SIZE, TransportError
from git_remote_rpc.rpc._wire import FrameChannel

_logger = logging.getLogger("git_remote_rpc.relay")


def _noop() -> None:
    pass


@dataclass(frozen=True)
class Endpoint:
    """A byte source and a byte sink, plus a way to signal end of writing.

    Attributes:
        reader: Source of bytes; ``read1`` is preferred when present.
        writer: Sink of bytes; flushed after every write when it has ``flush``.
        close_write: Half-close of the sink.

    """

    reader: BinaryIO
    writer: BinaryIO
    close_write: Callable[[], None] = field(default=_noop)


def stdio_endpoint(
    stdin: BinaryIO | None = None,
    stdout: BinaryIO | None = None,
) -> Endpoint:
    """Endpoint over the process's binary stdin/stdout (or the given streams)."""
    return Endpoint(
        reader=stdin if stdin is not None else sys.stdin.buffer,
        writer=stdout if stdout is not None else sys.stdout.buffer,
    )


def channel_endpoint(channel: FrameChannel) -> Endpoint:
    """Endpoint over a frame channel; closing the write side half-closes the stream."""
    writer = ChannelWriter(channel)
    return Endpoint(
        reader=ChannelReader(channel),  # type: ignore[arg-type]
        writer=writer,  # type: ignore[arg-type]
        close_write=writer.close_write,
    )


def read_chunk(reader: BinaryIO, size: int) -> bytes:
    """Read at most *size* bytes without waiting for a full chunk."""
    read1 = getattr(reader, "read1", None)
    if read1 is not None:
        return read1(size)
    return reader.read(size)


def write_all(writer: BinaryIO, data: bytes) -> None:
    """Write *data* (retrying short raw writes) and flush it through to the sink.

    Raises:
        BlockingIOError: If the sink would block before all of *data* is written.

    """
    view = memoryview(data)
    while view:
        n = writer.write(view)
        if n is None:
            raise BlockingIOError(errno.EAGAIN, "write would block", len(data) - len(view))
        view = view[n:]
    flush = getattr(writer, "flush", None)
    if flush is not None:
        flush()


def pump(reader: BinaryIO, writer: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """Copy *reader* to *writer* chunk by chunk until end of input.

    Empty reads end the copy and are never written.  Returns the number of
    bytes copied; read and write errors propagate.
    """
    total = 0
    while True:
        chunk = read_chunk(reader, chunk_size)
        if not chunk:
            return total
        write_all(writer, chunk)
        total += len(chunk)


def _upload(local: Endpoint, remote: Endpoint, chunk_size: int, done: queue.Queue[BaseException | None]) -> None:
    try:
        pump(local.reader, remote.writer, chunk_size)
    except BaseException as exc:
        done.put(exc)
        return
    try:
        remote.close_write()
    except Exception:
        # The remote may already have finished and gone away.
        _logger.debug("half-close after end of input failed", exc_info=True)
    done.put(None)


def relay(local: Endpoint, remote: Endpoint, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
    """Copy bytes in both directions until both are exhausted.

    Raises:
        TransportError: If the remote side fails.
        RpcError: If the remote side reports an error.
        OSError: If a local read or write fails.

    """
    done: queue.Queue[BaseException | None] = queue.Queue(maxsize=1)
    upload = threading.Thread(
        target=_upload,
        args=(local, remote, chunk_size, done),
        name="relay-upload",
        daemon=True,
    )
    upload.start()

    downloaded = pump(remote.reader, local.writer, chunk_size)
    _logger.debug("Download finished after %d bytes, waiting for upload", downloaded)
    err = done.get()
    if err is None:
        return
    if isinstance(err, Exception):
        raise err
    raise TransportError("upload interrupted", err)
