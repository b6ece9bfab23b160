"""
intentforge — unit tests for the context router

File: tests/unit/context_plane/test_router.py
Last updated: 2026-10-18

Purpose
- Validate task routing, budget enforcement, cache accounting, and parameter safety.

What this test file should cover
- Default interpret_intent routing loads exactly its three artifacts.
- Budget failures name the metric, totals, and full file list.
- Cache hits avoid store reads.
- Optional and required artifacts behave differently when absent.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from intentforge.context_plane.artifact_store import (
    FileArtifactStore,
    InMemoryArtifactStore,
    bundled_artifact_root,
)
from intentforge.context_plane.cache import ArtifactCache
from intentforge.context_plane.required_files import SIZE_TABLE
from intentforge.context_plane.router import ContextRouter
from intentforge.domain.errors import (
    ArtifactDecodeError,
    ArtifactNotFoundError,
    BudgetExceeded,
    InvalidParameterError,
    MissingParameterError,
)
from intentforge.domain.models import BudgetPolicy, Capability, Task

if TYPE_CHECKING:
    from tests.conftest import FakeClock

INTERPRET_FILES = (
    "schemas/global-intent.schema.json",
    "intent/intent-mapping.rules.json",
    "intent/ambiguity-resolution.rules.json",
)


def _memory_store(
    artifact_store: FileArtifactStore, paths: tuple[str, ...]
) -> InMemoryArtifactStore:
    return InMemoryArtifactStore({path: artifact_store.read_bytes(path) for path in paths})


def test_interpret_intent_routes_exactly_three_files(
    make_router: Callable[..., ContextRouter],
) -> None:
    context = make_router().route(Task.INTERPRET_INTENT)

    assert context.metadata.files_loaded == INTERPRET_FILES
    assert context.metadata.estimated_cost == 2900
    assert context.metadata.cache_hit is False
    assert set(context.artifacts) == {
        "schema",
        "intent_mapping_rules",
        "ambiguity_resolution_rules",
    }
    assert [cost.estimated_cost for cost in context.costs] == [1200, 800, 900]


def test_oversized_artifact_raises_budget_exceeded_with_file_list(
    make_router: Callable[..., ContextRouter],
) -> None:
    size_table = dict(SIZE_TABLE)
    size_table["schemas/global-intent.schema.json"] = 4300
    router = make_router(size_table=size_table)

    with pytest.raises(BudgetExceeded) as excinfo:
        router.route("interpret_intent")

    error = excinfo.value
    assert error.metric == "max_cost"
    assert error.total == 6000
    assert error.limit == 5000
    assert error.files == INTERPRET_FILES
    for path in INTERPRET_FILES:
        assert path in str(error)
    assert error.to_dict()["code"] == "budget_exceeded"


def test_file_count_budget_is_enforced(make_router: Callable[..., ContextRouter]) -> None:
    with pytest.raises(BudgetExceeded) as excinfo:
        make_router(max_files=2).route(Task.INTERPRET_INTENT)

    assert excinfo.value.metric == "max_files"
    assert excinfo.value.exceeded == ("max_files",)


def test_byte_budget_is_measured_on_actual_content(
    make_router: Callable[..., ContextRouter],
) -> None:
    with pytest.raises(BudgetExceeded) as excinfo:
        make_router(max_bytes=64).route(Task.INTERPRET_INTENT)

    assert excinfo.value.metric == "max_bytes"
    assert excinfo.value.total > 64


def test_cache_hits_skip_store_reads(
    artifact_store: FileArtifactStore, fake_clock: FakeClock
) -> None:
    store = _memory_store(artifact_store, INTERPRET_FILES)
    cache = ArtifactCache(ttl_seconds=60, clock=fake_clock.monotonic)
    router = ContextRouter(
        store, budget=BudgetPolicy(max_cost=5000, max_files=10, max_bytes=1_048_576), cache=cache
    )

    first = router.route(Task.INTERPRET_INTENT)
    second = router.route(Task.INTERPRET_INTENT)

    assert store.read_count() == 3
    assert first.metadata.cache_misses == INTERPRET_FILES
    assert second.metadata.cache_hit is True
    assert second.metadata.cache_hits == INTERPRET_FILES
    assert first.artifacts == second.artifacts

    fake_clock.advance(61)
    router.route(Task.INTERPRET_INTENT)
    assert store.read_count() == 6


def test_optional_capability_is_omitted_without_parameter(
    make_router: Callable[..., ContextRouter],
) -> None:
    context = make_router().route(Task.MATCH_CAPABILITY)

    assert context.metadata.files_loaded == ("capabilities/registry.index.json",)
    assert "capability" not in context.artifacts


def test_optional_capability_is_loaded_and_decoded_with_parameter(
    make_router: Callable[..., ContextRouter],
) -> None:
    context = make_router().route(Task.MATCH_CAPABILITY, {"capability_id": "star-rating"})

    capability = context.require("capability")
    assert isinstance(capability, Capability)
    assert capability.supports("read-only-mode")
    assert capability.limit_for("stars") == 10


def test_missing_optional_artifact_is_skipped(
    make_router: Callable[..., ContextRouter],
) -> None:
    context = make_router().route(Task.MATCH_CAPABILITY, {"capability_id": "slider"})

    assert "capability" not in context.artifacts


def test_missing_required_artifact_is_fatal(make_router: Callable[..., ContextRouter]) -> None:
    with pytest.raises(ArtifactNotFoundError, match="capabilities/slider.capability.json"):
        make_router().route(Task.LOAD_CAPABILITY, {"capability_id": "slider"})


def test_required_parameter_must_be_supplied(make_router: Callable[..., ContextRouter]) -> None:
    with pytest.raises(MissingParameterError, match="capability_id"):
        make_router().route(Task.GENERATE_COMPONENT_SPEC)


@pytest.mark.parametrize("value", ["../secrets", "a/b", ".hidden", ""])
def test_unsafe_parameters_are_rejected(
    make_router: Callable[..., ContextRouter], value: str
) -> None:
    with pytest.raises((InvalidParameterError, MissingParameterError)):
        make_router().route(Task.LOAD_SCHEMA, {"schema_name": value})


def test_unknown_task_is_rejected(make_router: Callable[..., ContextRouter]) -> None:
    with pytest.raises(ValueError, match="unknown task"):
        make_router().route("summarize_everything")


def test_malformed_artifact_raises_decode_error(artifact_store: FileArtifactStore) -> None:
    store = _memory_store(artifact_store, INTERPRET_FILES)
    store.put("intent/intent-mapping.rules.json", "{not json")
    router = ContextRouter(
        store, budget=BudgetPolicy(max_cost=5000, max_files=10, max_bytes=1_048_576)
    )

    with pytest.raises(ArtifactDecodeError, match="invalid JSON"):
        router.route(Task.INTERPRET_INTENT)


def test_validate_rules_context_decodes_rule_sets(
    make_router: Callable[..., ContextRouter],
) -> None:
    context = make_router().route(Task.VALIDATE_RULES)

    assert context.metadata.estimated_cost == 2500
    assert context.require("core_rules").name == "core"
    assert context.require("accessibility_rules").name == "accessibility"


_BUNDLED_INTERPRET = {
    path: FileArtifactStore(bundled_artifact_root()).read_bytes(path) for path in INTERPRET_FILES
}


@settings(max_examples=50, deadline=None)
@given(max_cost=st.integers(min_value=1, max_value=10_000))
def test_cost_budget_is_monotone_and_fails_before_decoding(max_cost: int) -> None:
    budget = BudgetPolicy(max_cost=max_cost, max_files=10, max_bytes=1_048_576)
    if max_cost >= 2900:
        context = ContextRouter(InMemoryArtifactStore(_BUNDLED_INTERPRET), budget=budget).route(
            Task.INTERPRET_INTENT
        )
        assert context.metadata.estimated_cost == 2900
        return

    corrupted = InMemoryArtifactStore({path: b"{not json" for path in INTERPRET_FILES})
    with pytest.raises(BudgetExceeded) as excinfo:
        ContextRouter(corrupted, budget=budget).route(Task.INTERPRET_INTENT)
    assert excinfo.value.total == 2900
    assert excinfo.value.limit == max_cost
