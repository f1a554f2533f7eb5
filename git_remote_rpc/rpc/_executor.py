"""Run a backing command with its stdio bridged to a frame channel."""

from __future__ import annotations

import contextlib
import io
import logging
import subprocess
import threading
import time
from collections.abc import Mapping, Sequence
from typing import BinaryIO

from git_remote_rpc.log import Message
from git_remote_rpc.rpc._adapter import ChannelReader, ChannelWriter
from git_remote_rpc.rpc._common import DEFAULT_CHUNK_SIZE, ServiceFailed, _subprocess_logger
from git_remote_rpc.rpc._relay import pump
from git_remote_rpc.rpc._types import ValidatedRequest
from git_remote_rpc.rpc._wire import FrameChannel

_stderr_logger = logging.getLogger("git_remote_rpc.subprocess.stderr")


def _capture_stderr(pipe: BinaryIO, sink: bytearray, service: str) -> None:
    """Drain child stderr into *sink*, echoing each line at DEBUG. Runs as a daemon thread."""
    lines = io.BufferedReader(pipe)  # type: ignore[arg-type]
    try:
        for raw_line in lines:
            sink.extend(raw_line)
            if _stderr_logger.isEnabledFor(logging.DEBUG):
                _stderr_logger.debug(
                    "%s: %s",
                    service,
                    raw_line.decode("utf-8", errors="replace").rstrip(),
                )
    except (OSError, ValueError):
        _subprocess_logger.debug("stderr capture of %s ended early", service, exc_info=True)
    with contextlib.suppress(OSError, ValueError):
        lines.close()


class _Feeder:
    """Copies the channel into the child's stdin until end of data."""

    __slots__ = ("_chunk_size", "_proc", "_reader", "error", "thread")

    def __init__(self, reader: ChannelReader, proc: subprocess.Popen[bytes], chunk_size: int) -> None:
        self._reader = reader
        self._proc = proc
        self._chunk_size = chunk_size
        self.error: BaseException | None = None
        self.thread = threading.Thread(target=self._run, name="executor-stdin", daemon=True)

    def _run(self) -> None:
        stdin = self._proc.stdin
        assert stdin is not None
        try:
            pump(self._reader, stdin, self._chunk_size)  # type: ignore[arg-type]
        except BrokenPipeError:
            # The child stopped reading; its exit status tells the story.
            pass
        except Exception as exc:
            self.error = exc
            _subprocess_logger.debug("stdin feed of pid %d failed, killing child", self._proc.pid, exc_info=True)
            with contextlib.suppress(OSError):
                self._proc.kill()
        finally:
            with contextlib.suppress(OSError):
                stdin.close()


class SubprocessExecutor:
    """Spawn the command for a validated request and wire it to a channel.

    The command line is ``commands[service] + [path]``, or ``[service, path]``
    when there is no override.  It is never run through a shell.

    - stdin is fed from the channel on a separate thread and closed on end of
      data;
    - stdout is sent to the channel on the calling thread, one frame per read;
    - stderr is buffered in memory.  It becomes the error if the command
      fails, and is sent to the client as an INFO log message otherwise.
    """

    __slots__ = ("_chunk_size", "_commands")

    def __init__(
        self,
        commands: Mapping[str, Sequence[str]] | None = None,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """Initialize with optional per-service command overrides."""
        self._commands: dict[str, tuple[str, ...]] = {k: tuple(v) for k, v in (commands or {}).items()}
        self._chunk_size = chunk_size

    def command_for(self, request: ValidatedRequest) -> list[str]:
        """Return the argv that serves *request*."""
        return [*self._commands.get(request.service, (request.service,)), request.path]

    def run(self, request: ValidatedRequest, channel: FrameChannel) -> int:
        """Run the command to completion and return its exit status (always 0).

        Raises:
            ServiceFailed: If the command cannot be started or exits non-zero;
                carries the captured stderr verbatim.
            TransportError: If the channel fails while the command runs.

        """
        cmd = self.command_for(request)
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
            )
        except OSError as exc:
            raise ServiceFailed(request.service, str(exc)) from exc
        assert proc.stdout is not None
        assert proc.stderr is not None
        start = time.monotonic()
        _subprocess_logger.debug("spawned %s: pid=%d", cmd, proc.pid)

        stderr = bytearray()
        stderr_thread = threading.Thread(
            target=_capture_stderr,
            args=(proc.stderr, stderr, request.service),
            name="executor-stderr",
            daemon=True,
        )
        stderr_thread.start()
        feeder = _Feeder(ChannelReader(channel), proc, self._chunk_size)
        feeder.thread.start()

        try:
            pump(proc.stdout, ChannelWriter(channel), self._chunk_size)  # type: ignore[arg-type]
        except BaseException:
            proc.kill()
            proc.wait()
            raise
        finally:
            proc.stdout.close()

        returncode = proc.wait()
        stderr_thread.join()
        _subprocess_logger.debug(
            "%s exited: pid=%d, returncode=%d, duration_ms=%.2f",
            request.service,
            proc.pid,
            returncode,
            (time.monotonic() - start) * 1000,
        )
        if feeder.error is not None:
            raise feeder.error
        if returncode != 0:
            raise ServiceFailed(request.service, stderr.decode("utf-8", errors="replace"), returncode)
        if stderr:
            text = stderr.decode("utf-8", errors="replace").rstrip("\n")
            channel.send_log(Message.info(text, service=request.service))
        return returncode
