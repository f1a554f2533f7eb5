"""Frame channel: discrete binary frames over a pair of Arrow IPC streams.

Each direction of a transport carries one IPC stream with schema
``data: binary``.  A frame is one single-row batch.  Zero-row batches are
control messages, told apart by their custom metadata:

- the *open* batch (first batch of the client stream) carries the stream
  metadata (``service``, ``repository`` and the protocol version);
- the *end-of-data* batch precedes the IPC EOS marker on a clean close, so
  that a peer vanishing between two messages is not mistaken for one;
- *log* batches carry a :class:`~git_remote_rpc.log.Message`; at EXCEPTION
  level the message is the remote side's terminal error.
"""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeAlias

import pyarrow as pa
from pyarrow import ipc

from git_remote_rpc.log import Level, Message
from git_remote_rpc.metadata import (
    LOG_EXTRA_KEY,
    LOG_LEVEL_KEY,
    LOG_MESSAGE_KEY,
    STREAM_END_KEY,
    encode_metadata,
)
from git_remote_rpc.rpc._common import (
    DATA_SCHEMA,
    InvalidMetadata,
    RpcError,
    StatusCode,
    TransportError,
)
from git_remote_rpc.rpc._debug import fmt_metadata, fmt_payload, wire_stream_logger
from git_remote_rpc.rpc._transport import RpcTransport
from git_remote_rpc.utils import empty_batch, ipc_trace

# Faults raised by pyarrow or by the underlying file objects while reading or
# writing an IPC stream.
_TRANSPORT_FAULTS = (OSError, ValueError, pa.ArrowException)

# Receiving also decodes peer-controlled batches.
_RECEIVE_FAULTS = (*_TRANSPORT_FAULTS, TypeError)

# Names Message takes positionally; never accepted from the wire as extras.
_RESERVED_EXTRA_KEYS = frozenset({"level", "message"})

_END_OF_DATA_METADATA = pa.KeyValueMetadata({STREAM_END_KEY: b"1"})


# ---------------------------------------------------------------------------
# Channel results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Data:
    """One received frame."""

    payload: bytes


@dataclass(frozen=True)
class EndOfData:
    """The peer closed its send side cleanly."""


@dataclass(frozen=True)
class ChannelError:
    """The channel failed; *cause* is a transport fault or a remote error."""

    cause: BaseException


ChannelResult: TypeAlias = Data | EndOfData | ChannelError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _frame_batch(data: bytes) -> pa.RecordBatch:
    return pa.RecordBatch.from_arrays([pa.array([data], type=pa.binary())], schema=DATA_SCHEMA)


def _message_from_metadata(custom_metadata: pa.KeyValueMetadata) -> Message | None:
    """Rebuild a log :class:`Message` from batch metadata, or ``None`` if it is not one."""
    level_bytes = custom_metadata.get(LOG_LEVEL_KEY)
    message_bytes = custom_metadata.get(LOG_MESSAGE_KEY)
    if level_bytes is None or message_bytes is None:
        return None
    try:
        level = Level(level_bytes.decode())
    except ValueError:
        level = Level.EXCEPTION
    extra: dict[str, Any] = {}
    raw_extra = custom_metadata.get(LOG_EXTRA_KEY)
    if raw_extra is not None:
        decoded: object = None
        with contextlib.suppress(json.JSONDecodeError, UnicodeDecodeError):
            decoded = json.loads(raw_extra.decode())
        if isinstance(decoded, dict):
            extra = {str(k): v for k, v in decoded.items() if k not in _RESERVED_EXTRA_KEYS}
    return Message(level, message_bytes.decode("utf-8", errors="replace"), **extra)


def _error_from_message(msg: Message) -> RpcError:
    extra = msg.extra or {}
    try:
        code = StatusCode(str(extra.get("status_code", StatusCode.INTERNAL.value)))
    except ValueError:
        code = StatusCode.INTERNAL
    return RpcError(code, str(extra.get("exception_type", msg.level.value)), msg.message)


# ---------------------------------------------------------------------------
# FrameChannel
# ---------------------------------------------------------------------------


class FrameChannel:
    """Send and receive discrete binary frames over an :class:`RpcTransport`.

    The send side and the receive side share no state, so one thread may
    send while another receives.  Neither side is safe for more than one
    thread at a time.

    Frame and byte counters are kept for the access log.
    """

    __slots__ = (
        "_ipc_reader",
        "_ipc_writer",
        "_on_log",
        "_recv_result",
        "_send_closed",
        "_transport",
        "bytes_in",
        "bytes_out",
        "frames_in",
        "frames_out",
    )

    def __init__(
        self,
        transport: RpcTransport,
        *,
        on_log: Callable[[Message], None] | None = None,
    ) -> None:
        """Initialize over *transport*; *on_log* receives non-fatal log batches from the peer."""
        self._transport = transport
        self._on_log = on_log
        self._ipc_writer: ipc.RecordBatchStreamWriter | None = None
        self._ipc_reader: ipc.RecordBatchStreamReader | None = None
        self._send_closed = False
        self._recv_result: EndOfData | ChannelError | None = None
        self.frames_in = 0
        self.frames_out = 0
        self.bytes_in = 0
        self.bytes_out = 0

    @property
    def transport(self) -> RpcTransport:
        """The underlying transport."""
        return self._transport

    # -- send side -----------------------------------------------------------

    def _flush(self) -> None:
        flush = getattr(self._transport.writer, "flush", None)
        if flush is not None:
            flush()

    def open_send(self, metadata: pa.KeyValueMetadata | None = None) -> None:
        """Start the outgoing stream, optionally with an open batch carrying *metadata*.

        Raises:
            TransportError: If the stream header cannot be written.

        """
        if self._ipc_writer is not None:
            raise RuntimeError("send side already open")
        if wire_stream_logger.isEnabledFor(logging.DEBUG):
            wire_stream_logger.debug("Open send stream: metadata=%s", fmt_metadata(metadata))
        try:
            self._ipc_writer = ipc.new_stream(self._transport.writer, DATA_SCHEMA)
            if metadata is not None:
                self._ipc_writer.write_batch(empty_batch(DATA_SCHEMA), custom_metadata=metadata)
            self._flush()
        except _TRANSPORT_FAULTS as exc:
            raise TransportError("opening stream", exc) from exc
        ipc_trace("ipc_open", metadata=fmt_metadata(metadata))

    def _writer(self) -> ipc.RecordBatchStreamWriter:
        if self._send_closed:
            raise TransportError("send on closed stream")
        if self._ipc_writer is None:
            self.open_send()
        assert self._ipc_writer is not None
        return self._ipc_writer

    def send(self, data: bytes) -> None:
        """Send *data* as exactly one frame.

        Raises:
            TransportError: If the frame is not accepted by the transport.

        """
        payload = bytes(data)
        writer = self._writer()
        try:
            writer.write_batch(_frame_batch(payload))
            self._flush()
        except _TRANSPORT_FAULTS as exc:
            raise TransportError("send", exc) from exc
        self.frames_out += 1
        self.bytes_out += len(payload)
        if wire_stream_logger.isEnabledFor(logging.DEBUG):
            wire_stream_logger.debug("Send frame: %s", fmt_payload(payload))
        ipc_trace("ipc_send", nbytes=len(payload))

    def send_log(self, msg: Message) -> None:
        """Send a log message to the peer as a zero-row batch."""
        writer = self._writer()
        try:
            writer.write_batch(empty_batch(DATA_SCHEMA), custom_metadata=encode_metadata(msg.add_to_metadata()))
            self._flush()
        except _TRANSPORT_FAULTS as exc:
            raise TransportError("send", exc) from exc

    def close_send(self) -> None:
        """Half-close: tell the peer no more frames will be sent.

        Idempotent.  The receive side stays usable.
        """
        if self._send_closed:
            return
        writer = self._writer()
        self._send_closed = True
        try:
            writer.write_batch(empty_batch(DATA_SCHEMA), custom_metadata=_END_OF_DATA_METADATA)
            writer.close()
            self._flush()
        except _TRANSPORT_FAULTS as exc:
            raise TransportError("close send", exc) from exc
        if wire_stream_logger.isEnabledFor(logging.DEBUG):
            wire_stream_logger.debug(
                "Close send stream: frames=%d, bytes=%d",
                self.frames_out,
                self.bytes_out,
            )
        ipc_trace("ipc_close_send", frames=self.frames_out, nbytes=self.bytes_out)

    def fail(self, exc: BaseException) -> None:
        """Report *exc* to the peer as the terminal error of the outgoing stream."""
        if self._send_closed:
            return
        writer = self._writer()
        self._send_closed = True
        if wire_stream_logger.isEnabledFor(logging.DEBUG):
            wire_stream_logger.debug("Write error batch: %s: %s", type(exc).__name__, str(exc)[:200])
        md = encode_metadata(Message.from_exception(exc).add_to_metadata())
        try:
            writer.write_batch(empty_batch(DATA_SCHEMA), custom_metadata=md)
            writer.close()
            self._flush()
        except _TRANSPORT_FAULTS as err:
            raise TransportError("send error", err) from err

    # -- receive side --------------------------------------------------------

    def _reader(self) -> ipc.RecordBatchStreamReader:
        if self._ipc_reader is None:
            reader = ipc.open_stream(self._transport.reader)
            if not reader.schema.equals(DATA_SCHEMA):
                raise TransportError(f"unexpected stream schema: {reader.schema}")
            self._ipc_reader = reader
        return self._ipc_reader

    def accept(self) -> pa.KeyValueMetadata | None:
        """Read the peer's open batch and return its metadata (server side).

        Returns ``None`` when the batch carries no metadata at all.

        Raises:
            InvalidMetadata: If the stream does not start with an open batch.
            TransportError: If the stream cannot be read.

        """
        try:
            batch, custom_metadata = self._reader().read_next_batch_with_custom_metadata()
        except StopIteration:
            raise InvalidMetadata("missing stream metadata") from None
        except _TRANSPORT_FAULTS as exc:
            raise TransportError("reading stream header", exc) from exc
        if batch.num_rows != 0:
            raise InvalidMetadata("missing stream metadata")
        if wire_stream_logger.isEnabledFor(logging.DEBUG):
            wire_stream_logger.debug("Accept stream: metadata=%s", fmt_metadata(custom_metadata))
        ipc_trace("ipc_accept", metadata=fmt_metadata(custom_metadata))
        return custom_metadata

    def recv(self) -> ChannelResult:
        """Block until the next frame, a clean close, or a failure.

        Once :class:`EndOfData` or :class:`ChannelError` has been returned,
        every later call returns the same result.
        """
        if self._recv_result is not None:
            return self._recv_result
        try:
            reader = self._reader()
            while True:
                batch, custom_metadata = reader.read_next_batch_with_custom_metadata()
                if batch.num_rows > 0:
                    if batch.column(0).null_count:
                        raise TransportError("null frame payload")
                    payload = b"".join(batch.column(0).to_pylist())
                    self.frames_in += 1
                    self.bytes_in += len(payload)
                    if wire_stream_logger.isEnabledFor(logging.DEBUG):
                        wire_stream_logger.debug("Recv frame: %s", fmt_payload(payload))
                    ipc_trace("ipc_recv", nbytes=len(payload))
                    return Data(payload)
                if custom_metadata is None:
                    continue
                if custom_metadata.get(STREAM_END_KEY) is not None:
                    self._recv_result = EndOfData()
                    break
                msg = _message_from_metadata(custom_metadata)
                if msg is None:
                    continue
                if msg.level == Level.EXCEPTION:
                    self._recv_result = ChannelError(_error_from_message(msg))
                    break
                if self._on_log is not None:
                    self._on_log(msg)
        except StopIteration:
            self._recv_result = ChannelError(TransportError("stream ended without end-of-data"))
        except TransportError as exc:
            self._recv_result = ChannelError(exc)
        except _RECEIVE_FAULTS as exc:
            self._recv_result = ChannelError(TransportError("receive", exc))
        if wire_stream_logger.isEnabledFor(logging.DEBUG):
            wire_stream_logger.debug(
                "Receive side done: %r, frames=%d, bytes=%d",
                self._recv_result,
                self.frames_in,
                self.bytes_in,
            )
        return self._recv_result
