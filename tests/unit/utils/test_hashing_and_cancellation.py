"""Unit tests for hashing helpers, clock formatting, and cancellation tokens."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path

import pytest

from intentforge.utils.concurrency import CancellationToken, OperationCancelledError, iso8601z
from intentforge.utils.hashing import (
    canonical_json,
    sha256_bytes,
    sha256_file,
    sha256_json,
    sha256_text,
)

pytestmark = pytest.mark.unit


def test_canonical_json_ignores_key_order() -> None:
    assert canonical_json({"b": 1, "a": [1, "é"]}) == '{"a":[1,"é"],"b":1}'
    assert sha256_json({"b": 1, "a": 2}) == sha256_json({"a": 2, "b": 1})


def test_file_digest_matches_bytes_digest(tmp_path: Path) -> None:
    target = tmp_path / "payload.bin"
    target.write_bytes(b"x" * 10_000)

    assert sha256_file(target, chunk_size=333) == sha256_bytes(b"x" * 10_000)
    assert sha256_text("x" * 10_000) == sha256_bytes(b"x" * 10_000)
    with pytest.raises(ValueError, match="chunk_size"):
        sha256_file(target, chunk_size=0)


def test_iso8601z_normalizes_to_utc() -> None:
    offset = datetime(2026, 10, 18, 14, 0, tzinfo=timezone(timedelta(hours=2)))

    assert iso8601z(offset) == "2026-10-18T12:00:00.000000Z"
    assert iso8601z(datetime(2026, 10, 18, tzinfo=UTC)).endswith("Z")
    with pytest.raises(ValueError, match="timezone-aware"):
        iso8601z(datetime(2026, 10, 18))


def test_cancellation_token_raises_with_reason() -> None:
    token = CancellationToken()
    token.raise_if_cancelled()

    token.cancel("user interrupt")

    assert token.is_cancelled
    assert token.wait(0) is True
    with pytest.raises(OperationCancelledError, match="user interrupt"):
        token.raise_if_cancelled()
