"""
intentforge — hashing utilities

File: src/intentforge/utils/hashing.py
Last updated: 2026-10-18

Purpose
- SHA-256 digests for build identifiers, persisted payloads, and packaged archives.

Functional requirements
- ``canonical_json`` is byte-stable for equal values regardless of key order; every digest of
  structured data goes through it.
"""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path

PathLike = str | os.PathLike[str]


def canonical_json(value: object) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    return sha256_bytes(text.encode(encoding))


def sha256_json(value: object) -> str:
    return sha256_text(canonical_json(value))


def sha256_file(path: PathLike, *, chunk_size: int = 1 << 20) -> str:
    """Digest a file without loading it whole; used for packaged artifacts."""

    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    digest = hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


__all__ = ["canonical_json", "sha256_bytes", "sha256_file", "sha256_json", "sha256_text"]
