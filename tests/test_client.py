"""Tests for the remote-helper side: control channel, addresses and sessions."""

from __future__ import annotations

import io
from collections.abc import Callable

import pytest

from git_remote_rpc.log import Level, Message
from git_remote_rpc.rpc import (
    CAPABILITIES_REPLY,
    DEFAULT_PORT,
    Capabilities,
    Connect,
    ControlChannelError,
    RemoteAddress,
    RpcError,
    StatusCode,
    TransportError,
    Unrecognized,
    UnsupportedCommand,
    parse_control_line,
    parse_remote_address,
    read_control_line,
    run_helper,
)
from tests.conftest import CHATTY_SCRIPT, FAIL_SCRIPT, PipeDialer

# ---------------------------------------------------------------------------
# Control lines
# ---------------------------------------------------------------------------


class TestParseControlLine:
    """Tests for parse_control_line."""

    @pytest.mark.parametrize(
        ("line", "expected"),
        [
            ("capabilities", Capabilities()),
            ("connect git-upload-pack", Connect("git-upload-pack")),
            ("connect git-receive-pack", Connect("git-receive-pack")),
            ("connect ", Connect("")),
            ("connect  git-upload-pack", Connect(" git-upload-pack")),
            ("list", Unrecognized("list")),
            ("capabilities ", Unrecognized("capabilities ")),
            ("connect", Unrecognized("connect")),
            ("", Unrecognized("")),
        ],
    )
    def test_parse(self, line: str, expected: object) -> None:
        """Only exact commands are recognised; the service is taken verbatim."""
        assert parse_control_line(line) == expected


class TestReadControlLine:
    """Tests for read_control_line."""

    def test_strips_newline_only(self) -> None:
        """The trailing newline is removed and nothing else."""
        assert read_control_line(io.BytesIO(b"connect x \n")) == "connect x "

    def test_eof(self) -> None:
        """End of input before a newline is a control-channel error."""
        with pytest.raises(ControlChannelError, match="unexpected error reading stdin: EOF"):
            read_control_line(io.BytesIO(b"capabil"))

    def test_invalid_utf8(self) -> None:
        """Undecodable input is an unsupported command."""
        with pytest.raises(UnsupportedCommand):
            read_control_line(io.BytesIO(b"\xff\xfe\n"))


# ---------------------------------------------------------------------------
# Remote addresses
# ---------------------------------------------------------------------------


class TestParseRemoteAddress:
    """Tests for parse_remote_address."""

    def test_full_url(self) -> None:
        """Host, port and repository are split apart."""
        assert parse_remote_address("rpc://git.example.com:9418/team/project.git") == RemoteAddress(
            host="git.example.com", port=9418, repository="team/project.git"
        )

    def test_default_port(self) -> None:
        """A missing port uses the default."""
        address = parse_remote_address("rpc://localhost/repo.git")
        assert address.port == DEFAULT_PORT
        assert address.endpoint == f"localhost:{DEFAULT_PORT}"

    def test_ipv6_host(self) -> None:
        """Bracketed IPv6 hosts are accepted."""
        address = parse_remote_address("rpc://[::1]:8081/r.git")
        assert (address.host, address.port) == ("::1", 8081)

    @pytest.mark.parametrize(
        "url", ["repo.git", "rpc:///repo.git", "rpc://host:notaport/r.git", "host:8080/repo.git"]
    )
    def test_invalid(self, url: str) -> None:
        """URLs without a scheme and host, or with a bad port, are rejected."""
        with pytest.raises(TransportError, match="parsing remote address"):
            parse_remote_address(url)


# ---------------------------------------------------------------------------
# run_helper
# ---------------------------------------------------------------------------


def _helper(
    dialer: PipeDialer,
    stdin: bytes,
    url: str = "rpc://example.com/project.git",
    on_log: Callable[[Message], None] | None = None,
) -> bytes:
    stdout = io.BytesIO()
    try:
        run_helper(url, io.BytesIO(stdin), stdout, dialer=dialer, on_log=on_log)
    finally:
        dialer.join()
    return stdout.getvalue()


class TestRunHelper:
    """End-to-end helper sessions against an in-process server."""

    def test_capabilities_then_connect(self, pipe_dialer: Callable[..., PipeDialer]) -> None:
        """The concrete clone handshake: capabilities, connect, then raw bytes."""
        dialer = pipe_dialer()
        request = b"0032want deadbeefdeadbeefdeadbeefdeadbeefdeadbeef\n"
        out = _helper(dialer, b"capabilities\nconnect git-upload-pack\n" + request)
        assert out == b"*connect\n\n" + b"\n" + request
        assert dialer.addresses == [RemoteAddress("example.com", DEFAULT_PORT, "project.git")]

    def test_connect_without_capabilities(self, pipe_dialer: Callable[..., PipeDialer]) -> None:
        """connect may come first."""
        out = _helper(pipe_dialer(), b"connect git-receive-pack\nPACK")
        assert out == b"\nPACK"

    def test_capabilities_reply(self) -> None:
        """The capability list is exactly one capability and a blank line."""
        assert CAPABILITIES_REPLY == b"*connect\n\n"

    def test_large_payload(self, pipe_dialer: Callable[..., PipeDialer]) -> None:
        """Payloads larger than any buffer make the round trip intact."""
        payload = bytes(range(256)) * 2048
        out = _helper(pipe_dialer(), b"connect git-upload-pack\n" + payload)
        assert out == b"\n" + payload

    def test_unsupported_command(self, pipe_dialer: Callable[..., PipeDialer]) -> None:
        """Anything other than capabilities/connect fails without dialing."""
        dialer = pipe_dialer()
        with pytest.raises(UnsupportedCommand, match="unsupported command: fetch 1234 HEAD"):
            _helper(dialer, b"capabilities\nfetch 1234 HEAD\n")
        assert dialer.addresses == []

    def test_eof_before_connect(self, pipe_dialer: Callable[..., PipeDialer]) -> None:
        """git going away before connect is a control-channel error."""
        with pytest.raises(ControlChannelError, match="EOF"):
            _helper(pipe_dialer(), b"capabilities\n")

    def test_rejected_service(self, pipe_dialer: Callable[..., PipeDialer]) -> None:
        """A service rejected by the server surfaces as RpcError."""
        with pytest.raises(RpcError) as exc_info:
            _helper(pipe_dialer(), b"connect git-upload-archive\n")
        assert exc_info.value.status_code == StatusCode.INVALID_ARGUMENT
        assert "bad service: git-upload-archive" in str(exc_info.value)

    def test_failing_service(self, pipe_dialer: Callable[..., PipeDialer]) -> None:
        """A failing backing command surfaces its stderr on the client."""
        with pytest.raises(RpcError, match="does not appear to be a git repository"):
            _helper(pipe_dialer(FAIL_SCRIPT), b"connect git-upload-pack\n", url="rpc://h/missing.git")

    def test_server_log_reaches_callback(self, pipe_dialer: Callable[..., PipeDialer]) -> None:
        """Stderr of a successful command is handed to on_log, not written to stdout."""
        logs: list[Message] = []
        out = _helper(pipe_dialer(CHATTY_SCRIPT), b"connect git-upload-pack\n0000", on_log=logs.append)
        assert out == b"\n0000"
        assert [(m.level, m.message) for m in logs] == [(Level.INFO, "warning: serving a shallow mirror")]

    def test_bad_url(self, pipe_dialer: Callable[..., PipeDialer]) -> None:
        """An unparsable URL fails at connect."""
        with pytest.raises(TransportError):
            _helper(pipe_dialer(), b"connect git-upload-pack\n", url="not a url")
