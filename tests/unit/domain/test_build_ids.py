"""Unit tests for deterministic build identifiers and output paths."""

from __future__ import annotations

from pathlib import Path

import pytest
from hypothesis import given
from hypothesis import strategies as st

from intentforge.domain.ids import (
    build_output_path,
    canonicalize_request,
    compute_build_id,
    validate_build_id,
)


def test_canonicalization_collapses_whitespace() -> None:
    assert canonicalize_request("  5-star   rating,\n read-only ") == {
        "text": "5-star rating, read-only"
    }


def test_options_are_sorted_and_omitted_when_empty() -> None:
    request = canonicalize_request("rating", {"b": 2, "a": 1})

    assert list(request["options"]) == ["a", "b"]  # type: ignore[call-overload]
    assert "options" not in canonicalize_request("rating", {})


def test_blank_request_is_rejected() -> None:
    with pytest.raises(ValueError, match="must not be empty"):
        canonicalize_request(" \t ")


def test_build_id_format_and_digest() -> None:
    identifier = compute_build_id(canonicalize_request("5-star rating"), "star-rating", "1.0")

    assert validate_build_id(identifier.build_id) == str(identifier)
    assert identifier.build_id == f"build_{identifier.digest[:16]}"
    assert len(identifier.digest) == 64


def test_build_id_depends_on_capability_and_contract_version() -> None:
    request = canonicalize_request("5-star rating")

    base = compute_build_id(request, "star-rating", "1.0").build_id

    assert compute_build_id(request, "star-rating", "1.1").build_id != base
    assert compute_build_id(request, "other", "1.0").build_id != base


def test_cosmetic_request_differences_share_an_id() -> None:
    left = compute_build_id(canonicalize_request("5-star  rating"), "star-rating", "1.0")
    right = compute_build_id(canonicalize_request(" 5-star rating "), "star-rating", "1.0")

    assert left == right


@given(
    text=st.text(min_size=1).filter(lambda value: value.strip() != ""),
    options=st.dictionaries(st.text(max_size=8), st.integers(), max_size=4),
)
def test_build_id_is_a_pure_function(text: str, options: dict[str, int]) -> None:
    first = compute_build_id(canonicalize_request(text, options), "star-rating", "1.0")
    second = compute_build_id(
        canonicalize_request(text, dict(reversed(list(options.items())))), "star-rating", "1.0"
    )

    assert first == second


@pytest.mark.parametrize("value", ["bld_0123456789abcdef", "build_XYZ", "build_0123", "../x"])
def test_output_path_rejects_malformed_ids(tmp_path: Path, value: str) -> None:
    with pytest.raises(ValueError, match="invalid build id"):
        build_output_path(tmp_path, value)


def test_output_path_is_base_slash_id(tmp_path: Path) -> None:
    build_id = "build_0123456789abcdef"

    assert build_output_path(tmp_path, build_id) == tmp_path / build_id
