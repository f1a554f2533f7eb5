"""Tests for git_remote_rpc.metadata: metadata helpers."""

from __future__ import annotations

import pyarrow as pa

from git_remote_rpc.metadata import (
    REPOSITORY_KEY,
    REQUEST_VERSION,
    REQUEST_VERSION_KEY,
    SERVICE_KEY,
    encode_metadata,
    get_all,
)
from git_remote_rpc.rpc import StreamMetadata

# ---------------------------------------------------------------------------
# encode_metadata
# ---------------------------------------------------------------------------


class TestEncodeMetadata:
    """Tests for encode_metadata."""

    def test_encode_produces_bytes(self) -> None:
        """Keys and values are encoded as UTF-8 bytes."""
        md = encode_metadata({"service": "git-upload-pack"})
        assert md[b"service"] == b"git-upload-pack"


# ---------------------------------------------------------------------------
# get_all
# ---------------------------------------------------------------------------


class TestGetAll:
    """Tests for get_all, which keeps repeated keys apart."""

    def test_absent_key(self) -> None:
        """An absent key yields an empty list."""
        assert get_all(pa.KeyValueMetadata({b"a": b"1"}), b"b") == []

    def test_repeated_key_in_wire_order(self) -> None:
        """Every value of a repeated key is returned in order."""
        md = pa.KeyValueMetadata([(b"repository", b"one"), (b"service", b"s"), (b"repository", b"two")])
        assert get_all(md, b"repository") == [b"one", b"two"]

    def test_empty_value_is_present(self) -> None:
        """An empty value still counts as present."""
        assert get_all(pa.KeyValueMetadata({b"service": b""}), b"service") == [b""]


# ---------------------------------------------------------------------------
# StreamMetadata
# ---------------------------------------------------------------------------


class TestStreamMetadata:
    """Tests for the open-batch metadata a client sends."""

    def test_to_arrow_has_exactly_three_keys(self) -> None:
        """Service, repository and protocol version appear once each."""
        md = StreamMetadata(service="git-upload-pack", repository="a/b.git").to_arrow()
        assert get_all(md, SERVICE_KEY) == [b"git-upload-pack"]
        assert get_all(md, REPOSITORY_KEY) == [b"a/b.git"]
        assert get_all(md, REQUEST_VERSION_KEY) == [REQUEST_VERSION]
        assert len(md) == 3
