"""Shared utility helpers for intentforge."""

from intentforge.utils.concurrency import (
    CancellationToken,
    OperationCancelledError,
    iso8601z,
    utc_now,
)
from intentforge.utils.hashing import (
    canonical_json,
    sha256_bytes,
    sha256_file,
    sha256_json,
    sha256_text,
)

__all__ = [
    "CancellationToken",
    "OperationCancelledError",
    "canonical_json",
    "iso8601z",
    "sha256_bytes",
    "sha256_file",
    "sha256_json",
    "sha256_text",
    "utc_now",
]
