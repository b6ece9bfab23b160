"""
intentforge — unit tests for offline collaborators

File: tests/unit/control_plane/test_offline_collaborators.py
Last updated: 2026-10-18

Purpose
- Validate the keyword interpreter, spec generator, and local build executor against the
  bundled artifact store.

What this test file should cover
- Confidence scoring for complete, partial, and conflicting requests.
- Generated specifications conform to the component schema.
- Code generation follows the eight-step plan and packaging is byte-reproducible.
"""

from __future__ import annotations

import json
import zipfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from jsonschema import Draft202012Validator

from intentforge.context_plane.artifact_store import FileArtifactStore, bundled_artifact_root
from intentforge.context_plane.router import ContextRouter
from intentforge.control_plane.collaborators import (
    BuildArtifact,
    GeneratedFiles,
    artifact_name_for,
    check_artifact,
    check_generated_files,
)
from intentforge.control_plane.generation_plan import PlanValidationError, create_plan
from intentforge.control_plane.offline import (
    ArtifactCapabilitySource,
    DeterministicSpecGenerator,
    KeywordIntentInterpreter,
    LocalCodeBuildExecutor,
    camel_case,
    pascal_case,
)
from intentforge.domain.errors import ContractViolation
from intentforge.domain.models import Capability

pytestmark = pytest.mark.unit

BRAIN = bundled_artifact_root()


@pytest.fixture()
def interpreter(make_router: Callable[..., ContextRouter]) -> KeywordIntentInterpreter:
    return KeywordIntentInterpreter.from_router(make_router())


@pytest.fixture()
def capability(make_router: Callable[..., ContextRouter]) -> Capability:
    found = ArtifactCapabilitySource(make_router()).get("star-rating")
    assert found is not None
    return found


def _read_only_spec(
    interpreter: KeywordIntentInterpreter, capability: Capability
) -> dict[str, Any]:
    result = interpreter.interpret("5-star rating, read-only")
    assert result.candidate_intent is not None
    return DeterministicSpecGenerator().generate(result.candidate_intent, capability)


def test_read_only_star_rating_is_confident(interpreter: KeywordIntentInterpreter) -> None:
    result = interpreter.interpret("5-star rating, read-only")

    assert result.confidence == 0.95
    assert result.needs_clarification is False
    assert result.unmapped_phrases == ()
    intent = result.candidate_intent
    assert intent is not None
    assert intent["component_type"] == "star-rating"
    assert intent["behavior"]["interactivity"] == "read-only"
    assert intent["interaction"]["input_method"] == []
    assert intent["accessibility"]["keyboard_navigable"] is False
    assert intent["customizations"] == {"stars": 5}
    assert intent["features"] == ["display-rating", "read-only-mode"]


def test_candidate_intent_conforms_to_intent_schema(interpreter: KeywordIntentInterpreter) -> None:
    schema = json.loads((BRAIN / "schemas/global-intent.schema.json").read_text("utf-8"))
    result = interpreter.interpret("compact star rating with half stars")

    assert result.candidate_intent is not None
    assert list(Draft202012Validator(schema).iter_errors(result.candidate_intent)) == []
    assert result.candidate_intent["ui_intent"]["visual_style"] == "compact"
    assert "half-stars" in result.candidate_intent["features"]


def test_request_without_component_asks_which_component(
    interpreter: KeywordIntentInterpreter,
) -> None:
    result = interpreter.interpret("something read-only")

    assert result.confidence == 0.35
    assert result.needs_clarification is True
    assert result.candidate_intent is None
    assert result.clarification_question == (
        "Which kind of component do you need (for example: a star rating)?"
    )


def test_conflicting_modifiers_lower_confidence(interpreter: KeywordIntentInterpreter) -> None:
    result = interpreter.interpret("editable read-only star rating with sparkles")

    assert result.confidence == 0.56
    assert result.needs_clarification is True
    assert result.unmapped_phrases == ("sparkles",)
    assert result.clarification_question == (
        "The request mixes conflicting choices (editable, read-only); which one should apply?"
    )


def test_confident_conflict_proceeds_with_later_modifier(
    interpreter: KeywordIntentInterpreter,
) -> None:
    result = interpreter.interpret("editable read-only star rating")

    assert result.confidence == 0.65
    assert result.needs_clarification is False
    assert result.candidate_intent is not None
    assert result.candidate_intent["behavior"]["interactivity"] == "read-only"


def test_interpretation_is_deterministic(interpreter: KeywordIntentInterpreter) -> None:
    first = interpreter.interpret("high contrast star rating")
    second = interpreter.interpret("high contrast star rating")

    assert first == second


def test_unknown_capability_is_none(make_router: Callable[..., ContextRouter]) -> None:
    assert ArtifactCapabilitySource(make_router()).get("slider") is None


def test_generated_spec_conforms_to_component_schema(
    interpreter: KeywordIntentInterpreter, capability: Capability
) -> None:
    schema = json.loads((BRAIN / "schemas/component-spec.schema.json").read_text("utf-8"))

    spec = _read_only_spec(interpreter, capability)

    assert list(Draft202012Validator(schema).iter_errors(spec)) == []
    assert spec["component_name"] == "StarRating"
    assert spec["events"] == []
    assert spec["accessibility"]["keyboard_support"] is False
    assert spec["interaction"]["control_type"] == "display"
    assert [item["name"] for item in spec["properties"]] == ["value", "stars"]


def test_case_helpers() -> None:
    assert pascal_case("star-rating") == "StarRating"
    assert camel_case("max_stars") == "maxStars"


def test_plan_has_eight_sequential_steps(
    interpreter: KeywordIntentInterpreter, capability: Capability
) -> None:
    plan = create_plan(_read_only_spec(interpreter, capability))

    assert [step.order for step in plan.steps] == list(range(1, 9))
    assert "css/StarRating.css" in plan.output_paths
    assert plan.capability_id == "star-rating"


def test_plan_rejects_non_pascal_component_name() -> None:
    with pytest.raises(PlanValidationError, match="PascalCase"):
        create_plan({"component_name": "star_rating"})


def test_build_executor_renders_all_planned_files(
    tmp_path: Path,
    artifact_store: FileArtifactStore,
    interpreter: KeywordIntentInterpreter,
    capability: Capability,
) -> None:
    spec = _read_only_spec(interpreter, capability)
    plan = create_plan(spec)
    executor = LocalCodeBuildExecutor(artifact_store)

    generated = executor.generate_code(spec, plan, tmp_path)

    assert generated.files == plan.output_paths
    manifest = (Path(generated.output_dir) / "ControlManifest.Input.xml").read_text("utf-8")
    assert 'namespace="Contoso"' in manifest
    package = json.loads((Path(generated.output_dir) / "package.json").read_text("utf-8"))
    assert package["name"]


def test_packaging_is_byte_reproducible(
    tmp_path: Path,
    artifact_store: FileArtifactStore,
    interpreter: KeywordIntentInterpreter,
    capability: Capability,
) -> None:
    spec = _read_only_spec(interpreter, capability)
    plan = create_plan(spec)
    executor = LocalCodeBuildExecutor(artifact_store)

    artifacts = []
    for run in ("a", "b"):
        out = tmp_path / run
        generated = executor.generate_code(spec, plan, out)
        artifacts.append(executor.package(spec, generated, out, "StarRating_build.zip"))

    first, second = artifacts
    assert first.sha256 == second.sha256
    assert Path(first.artifact_path).read_bytes() == Path(second.artifact_path).read_bytes()
    with zipfile.ZipFile(first.artifact_path) as archive:
        names = archive.namelist()
        assert names == sorted(plan.output_paths)
        assert {info.date_time for info in archive.infolist()} == {(1980, 1, 1, 0, 0, 0)}


def test_build_contract_requires_every_planned_file() -> None:
    plan = create_plan({"component_name": "StarRating"})
    complete = GeneratedFiles(output_dir="out", files=plan.output_paths)
    assert check_generated_files(plan, complete) is complete

    partial = GeneratedFiles(output_dir="out", files=plan.output_paths[:-1])
    with pytest.raises(ContractViolation, match="planned file not generated"):
        check_generated_files(plan, partial)
    with pytest.raises(ContractViolation, match="expected GeneratedFiles"):
        check_generated_files(plan, {"files": list(plan.output_paths)})


def test_build_contract_checks_artifact_name() -> None:
    expected = artifact_name_for("StarRating", "build_0123456789abcdef")
    assert expected == "StarRating_build_0123456789abcdef.zip"

    artifact = BuildArtifact(
        artifact_name="StarRating.zip",
        artifact_path="out/StarRating.zip",
        sha256="0" * 64,
        size_bytes=1,
    )
    with pytest.raises(ContractViolation, match="does not match"):
        check_artifact(artifact, expected)
