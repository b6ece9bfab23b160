"""Unit tests for collaborator trust boundaries and final validation."""

from __future__ import annotations

import json
from typing import Any

import pytest

from intentforge.context_plane.artifact_store import bundled_artifact_root
from intentforge.domain.errors import CapabilityNotFoundError, ContractViolation
from intentforge.domain.models import Capability, IntentResult
from intentforge.verification_plane.contracts import (
    check_capability,
    check_intent_result,
    check_spec_trust,
    final_validate,
    is_contract_version_supported,
    schema_issues,
)

pytestmark = pytest.mark.unit

BRAIN = bundled_artifact_root()


def _load(relative: str) -> Any:
    return json.loads((BRAIN / relative).read_text(encoding="utf-8"))


@pytest.fixture()
def capability() -> Capability:
    return Capability.from_dict(_load("capabilities/star-rating.capability.json"))


@pytest.fixture()
def spec_schema() -> dict[str, Any]:
    return _load("schemas/component-spec.schema.json")


def _spec(**overrides: Any) -> dict[str, Any]:
    spec: dict[str, Any] = {
        "version": "1.0",
        "component_type": "star-rating",
        "component_name": "StarRating",
        "namespace": "Contoso",
        "display_name": "Star Rating",
        "description": "Displays a read-only star rating.",
        "interactivity": "read-only",
        "capabilities": {
            "capability_id": "star-rating",
            "features": ["display-rating", "read-only-mode"],
            "customizations": {"stars": 5},
        },
        "properties": [
            {"name": "value", "display_name": "Value", "data_type": "Decimal", "usage": "bound"}
        ],
        "resources": {"code": "index.ts"},
        "events": [],
    }
    spec.update(overrides)
    return spec


def _intent(**overrides: Any) -> IntentResult:
    values: dict[str, Any] = {
        "candidate_intent": {"component_type": "star-rating"},
        "confidence": 0.95,
        "unmapped_phrases": (),
        "needs_clarification": False,
        "version": "1.0",
    }
    values.update(overrides)
    return IntentResult(**values)


@pytest.mark.parametrize(
    ("version", "supported"),
    [("1.0", True), ("1.7", True), ("2.0", False), ("0.9", False), ("1", False), (None, False)],
)
def test_contract_version_compatibility(version: object, supported: bool) -> None:
    assert is_contract_version_supported(version) is supported


def test_confident_intent_is_accepted() -> None:
    check = check_intent_result(_intent())

    assert check.needs_clarification is False
    assert check.conservative_clarification is False


def test_intent_violations_are_collected_together() -> None:
    with pytest.raises(ContractViolation) as excinfo:
        check_intent_result(
            _intent(version="2.0", confidence=1.5, unmapped_phrases=None, candidate_intent=None)
        )

    violations = excinfo.value.violations
    assert len(violations) == 4
    assert excinfo.value.to_dict()["collaborator"] == "intent_interpreter"


def test_low_confidence_without_clarification_is_rejected() -> None:
    with pytest.raises(ContractViolation, match="below 0.6"):
        check_intent_result(_intent(confidence=0.4))


def test_clarification_above_threshold_is_conservative() -> None:
    check = check_intent_result(
        _intent(needs_clarification=True, candidate_intent=None, confidence=0.8)
    )

    assert check.needs_clarification is True
    assert check.conservative_clarification is True


def test_candidate_intent_is_checked_against_schema() -> None:
    schema = _load("schemas/global-intent.schema.json")

    with pytest.raises(ContractViolation, match="candidate_intent"):
        check_intent_result(_intent(candidate_intent={"bogus": True}), schema=schema)


def test_missing_capability_is_not_found(capability: Capability) -> None:
    with pytest.raises(CapabilityNotFoundError, match="slider"):
        check_capability(None, "slider")
    with pytest.raises(ContractViolation, match="mismatch"):
        check_capability(capability, "slider")
    assert check_capability(capability, "star-rating") is capability


def test_spec_trust_reports_structural_problems() -> None:
    with pytest.raises(ContractViolation) as excinfo:
        check_spec_trust(
            _spec(component_name="", properties="value", capabilities={}), "star-rating"
        )

    assert excinfo.value.violations == (
        "missing component_name",
        "missing properties collection",
        "capability id mismatch: expected 'star-rating', got None",
    )


def test_spec_trust_returns_copy() -> None:
    spec = _spec()

    trusted = check_spec_trust(spec, "star-rating")

    assert trusted == spec
    assert trusted is not spec


def test_schema_issues_are_sorted_errors(spec_schema: dict[str, Any]) -> None:
    spec = _spec(version="one", resources={})

    issues = schema_issues(spec, spec_schema)

    assert [issue.path for issue in issues] == ["resources", "version"]
    assert {issue.rule_id for issue in issues} == {"SCHEMA_001"}


def test_final_validate_passes_clean_spec(
    spec_schema: dict[str, Any], capability: Capability
) -> None:
    result = final_validate(_spec(), schema=spec_schema, capability=capability)

    assert result.is_valid
    assert result.total_rules == 4
    assert result.passed_rules == 4


def test_final_validate_enforces_capability_bounds(
    spec_schema: dict[str, Any], capability: Capability
) -> None:
    spec = _spec(
        capabilities={
            "capability_id": "star-rating",
            "features": ["display-rating", "confetti"],
            "customizations": {"stars": 12},
        },
        events=["OnHoverSubmit"],
    )

    result = final_validate(spec, schema=spec_schema, capability=capability)

    assert [issue.rule_id for issue in result.errors] == ["CAP_FEATURE_001", "CAP_LIMIT_001"]
    assert [issue.rule_id for issue in result.warnings] == ["CAP_FORBIDDEN_001"]
    assert "stars=12 > 10" in result.errors[1].message
