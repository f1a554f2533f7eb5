"""Log and error messages carried inside the tunnel's Arrow IPC streams.

Messages travel as zero-row batches whose custom metadata holds the level,
the text and an optional JSON ``extra`` blob.  They are interleaved with the
data frames of a stream:

    Message.info("repository is read-only")      # shown on the client in --verbose
    Message.from_exception(exc)                  # terminal error batch

An EXCEPTION level message ends the stream from the reader's point of view:
the client raises :class:`~git_remote_rpc.rpc.RpcError` when it sees one.

KEY CLASSES
-----------
Level : Enum with EXCEPTION, ERROR, WARN, INFO, DEBUG
Message : Log message with level, message text, and optional extras

"""

from __future__ import annotations

import json
from enum import Enum

from git_remote_rpc.metadata import LOG_EXTRA_KEY, LOG_LEVEL_KEY, LOG_MESSAGE_KEY

__all__ = [
    "Level",
    "Message",
]


class Level(Enum):
    """Severity levels for messages sent to the remote side.

    Attributes:
        EXCEPTION: Unrecoverable error that terminated the session.
        ERROR: Significant error that did not terminate the session.
        WARN: Potential issue that should be reviewed.
        INFO: General informational message.
        DEBUG: Detailed information useful for debugging.

    """

    EXCEPTION = "EXCEPTION"
    ERROR = "ERROR"
    WARN = "WARN"
    INFO = "INFO"
    DEBUG = "DEBUG"


class Message:
    """A message sent to the remote side as a zero-row batch.

    Attributes:
        level: Severity level indicating the nature of the message.
        message: Human-readable message text.
        extra: Additional key-value pairs, serialized as JSON on the wire.

    """

    __slots__ = ("extra", "level", "message")
    __hash__ = None  # type: ignore[assignment]  # Unhashable since we define __eq__

    def __init__(self, level: Level, message: str, **kwargs: object) -> None:
        """Create a message with level, message text, and optional extras."""
        self.level = level
        self.message = message
        self.extra: dict[str, object] | None = kwargs if kwargs else None

    def __eq__(self, other: object) -> bool:
        """Compare messages by level, message, and extra fields."""
        if not isinstance(other, Message):
            return NotImplemented
        return self.level == other.level and self.message == other.message and self.extra == other.extra

    def __repr__(self) -> str:
        """Return a string representation suitable for debugging."""
        if self.extra:
            return f"Message({self.level!r}, {self.message!r}, **{self.extra!r})"
        return f"Message({self.level!r}, {self.message!r})"

    @classmethod
    def info(cls, message: str, **kwargs: object) -> Message:
        """Create an INFO level message."""
        return cls(Level.INFO, message, **kwargs)

    def add_to_metadata(
        self,
        metadata: dict[str, str] | None = None,
    ) -> dict[str, str]:
        """Return a copy of *metadata* with the message fields added.

        Adds ``git_remote_rpc.log_level``, ``git_remote_rpc.log_message`` and,
        when extras are present, ``git_remote_rpc.log_extra`` (a JSON string).
        """
        result = dict(metadata) if metadata else {}
        result[LOG_LEVEL_KEY.decode()] = self.level.value
        result[LOG_MESSAGE_KEY.decode()] = self.message
        if self.extra:
            result[LOG_EXTRA_KEY.decode()] = json.dumps(self.extra)
        return result

    @classmethod
    def from_exception(cls, exc: BaseException) -> Message:
        """Produce an EXCEPTION message from an exception.

        The status code is taken from ``exc.status_code`` when the exception
        carries one (all tunnel errors do); anything else is ``internal``.
        No traceback is included.
        """
        status_code = getattr(exc, "status_code", None)
        code = status_code.value if status_code is not None else "internal"
        return cls(
            Level.EXCEPTION,
            str(exc),
            exception_type=type(exc).__name__,
            exception_message=str(exc),
            status_code=code,
        )
