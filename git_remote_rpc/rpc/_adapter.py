"""Byte-stream adapters over a :class:`FrameChannel`.

:class:`ChannelReader` and :class:`ChannelWriter` are raw binary IO objects,
so anything that consumes a file (``shutil.copyfileobj``, ``io``
wrappers, the relay) can treat the channel as a plain duplex pipe.
"""

from __future__ import annotations

import io

from git_remote_rpc.rpc._wire import ChannelError, Data, EndOfData, FrameChannel


class ChannelReader(io.RawIOBase):
    """Readable byte stream over the receive side of a channel.

    Leftover bytes of the last frame are kept until consumed; a read that can
    be served from them never touches the channel.
    """

    def __init__(self, channel: FrameChannel) -> None:
        """Wrap the receive side of *channel*."""
        super().__init__()
        self._channel = channel
        self._leftover = b""

    def readable(self) -> bool:
        """Always readable."""
        return True

    def readinto(self, buffer: memoryview | bytearray) -> int:  # type: ignore[override]
        """Fill *buffer* from leftover bytes or the next frame; 0 means end of data.

        Raises:
            TransportError: On a transport fault.
            RpcError: If the peer reported an error.

        """
        view = memoryview(buffer).cast("B")
        if not view.nbytes:
            return 0
        while not self._leftover:
            match self._channel.recv():
                case Data(payload=payload):
                    self._leftover = payload
                case EndOfData():
                    return 0
                case ChannelError(cause=cause):
                    raise cause
        n = min(view.nbytes, len(self._leftover))
        view[:n] = self._leftover[:n]
        self._leftover = self._leftover[n:]
        return n


class ChannelWriter(io.RawIOBase):
    """Writable byte stream over the send side of a channel.

    Every ``write`` is exactly one frame; ``close_write`` is the half-close.
    """

    def __init__(self, channel: FrameChannel) -> None:
        """Wrap the send side of *channel*."""
        super().__init__()
        self._channel = channel

    def writable(self) -> bool:
        """Always writable."""
        return True

    def write(self, data: bytes | bytearray | memoryview) -> int:  # type: ignore[override]
        """Send *data* as one frame and return its length.

        Raises:
            TransportError: If the transport does not accept the frame.

        """
        payload = bytes(data)
        self._channel.send(payload)
        return len(payload)

    def close_write(self) -> None:
        """Signal end of data to the peer."""
        self._channel.close_send()
