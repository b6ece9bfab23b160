"""Deterministic build identifiers and output paths."""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from intentforge.utils.hashing import canonical_json, sha256_text

BUILD_ID_PREFIX: Final[str] = "build"
BUILD_ID_HEX_LENGTH: Final[int] = 16
_FIELD_SEPARATOR: Final[str] = "|"

_BUILD_ID_RE: Final[re.Pattern[str]] = re.compile(
    rf"^{BUILD_ID_PREFIX}_[0-9a-f]{{{BUILD_ID_HEX_LENGTH}}}$"
)
_WHITESPACE_RE: Final[re.Pattern[str]] = re.compile(r"\s+")

__all__ = [
    "BUILD_ID_HEX_LENGTH",
    "BUILD_ID_PREFIX",
    "BuildIdentifier",
    "build_output_path",
    "canonicalize_request",
    "compute_build_id",
    "validate_build_id",
]


@dataclass(frozen=True, slots=True)
class BuildIdentifier:
    build_id: str
    digest: str

    def __str__(self) -> str:
        return self.build_id


def canonicalize_request(
    user_input: str,
    options: Mapping[str, object] | None = None,
) -> dict[str, object]:
    """Return the canonical request object hashed into the build identifier.

    Text is NFC-normalized, stripped, and internal whitespace runs collapse to one space,
    so cosmetic differences in the same request resolve to the same build.
    """

    if not isinstance(user_input, str):
        raise ValueError("user_input must be a string")
    normalized = _WHITESPACE_RE.sub(" ", unicodedata.normalize("NFC", user_input)).strip()
    if not normalized:
        raise ValueError("user_input must not be empty")
    request: dict[str, object] = {"text": normalized}
    if options:
        request["options"] = {str(key): options[key] for key in sorted(options)}
    return request


def compute_build_id(
    request: Mapping[str, object],
    capability_id: str,
    contract_version: str,
) -> BuildIdentifier:
    """Hash ``canonical(request) | capability_id | contract_version``.

    Pure function of its arguments; no clock or randomness participates.
    """

    if not isinstance(capability_id, str) or not capability_id.strip():
        raise ValueError("capability_id must be a non-empty string")
    if not isinstance(contract_version, str) or not contract_version.strip():
        raise ValueError("contract_version must be a non-empty string")
    material = _FIELD_SEPARATOR.join(
        (canonical_json(dict(request)), capability_id.strip(), contract_version.strip())
    )
    digest = sha256_text(material)
    return BuildIdentifier(
        build_id=f"{BUILD_ID_PREFIX}_{digest[:BUILD_ID_HEX_LENGTH]}",
        digest=digest,
    )


def validate_build_id(value: str) -> str:
    if not isinstance(value, str) or not _BUILD_ID_RE.fullmatch(value):
        raise ValueError(
            f"invalid build id {value!r}; expected {BUILD_ID_PREFIX}_<{BUILD_ID_HEX_LENGTH} hex>"
        )
    return value


def build_output_path(base: str | Path, build_id: str) -> Path:
    """Deterministic per-build output directory ``base/build_id``."""

    return Path(base) / validate_build_id(build_id)
