"""
intentforge — unit tests for the rule engine

File: tests/unit/verification_plane/test_rule_engine.py
Last updated: 2026-10-18

Purpose
- Validate the severity x auto_fixable decision matrix and single-pass evaluation.

What this test file should cover
- Each matrix cell produces the right action and result bucket.
- Fixes produce downgrades and never mutate the input.
- A fix that leaves its rule firing is reported as an error or warning, not a downgrade.
- Deterministic ordering by (category, rule id).
- Raising predicates abort the pass.
- Rule-set documents are validated at load time.
"""

from __future__ import annotations

import copy
from typing import Any

import pytest

from intentforge.context_plane.artifact_store import bundled_artifact_root
from intentforge.domain.errors import RuleDefinitionError, RuleEvaluationError
from intentforge.domain.models import Severity
from intentforge.verification_plane.rule_engine import (
    FixResult,
    Rule,
    RuleAction,
    RuleContext,
    RuleEngine,
    RuleSet,
    Spec,
    Violation,
    decide,
)
from intentforge.verification_plane.rule_sets import load_rule_set_file, load_rule_set_text

pytestmark = pytest.mark.unit

RULES_DIR = bundled_artifact_root() / "rules"


def _spec(**overrides: Any) -> dict[str, Any]:
    spec: dict[str, Any] = {
        "version": "1.0",
        "component_type": "star-rating",
        "component_name": "StarRating",
        "namespace": "IntentForge",
        "display_name": "Star Rating",
        "description": "Displays a read-only star rating.",
        "capabilities": {"capability_id": "star-rating", "features": ["display-rating"]},
        "properties": [
            {"name": "value", "display_name": "Value", "data_type": "Decimal", "usage": "bound"}
        ],
        "resources": {"code": "index.ts"},
        "events": [],
        "interaction": {"control_type": "display", "input_methods": []},
        "accessibility": {"aria_label": "Star Rating", "keyboard_support": False},
    }
    spec.update(overrides)
    return spec


def _always(path: str = "x") -> Any:
    def condition(spec: Spec, ctx: RuleContext) -> Violation | None:
        return Violation(path=path)

    return condition


def _flag_unset(spec: Spec, ctx: RuleContext) -> Violation | None:
    return None if spec.get("flag") is True else Violation(path="flag")


def _set_flag(spec: Spec, ctx: RuleContext) -> FixResult:
    fixed = dict(spec)
    fixed["flag"] = True
    return FixResult(spec=fixed, path="flag", original_value=spec.get("flag"), fixed_value=True)


def _rule(rule_id: str, severity: Severity, *, auto_fixable: bool = False, **kw: Any) -> Rule:
    return Rule(
        rule_id=rule_id,
        category=kw.pop("category", "test"),
        severity=severity,
        condition=kw.pop("condition", _flag_unset if auto_fixable else _always()),
        message=f"{rule_id} violated",
        suggestion="fix it",
        auto_fixable=auto_fixable,
        fix=kw.pop("fix", _set_flag if auto_fixable else None),
    )


@pytest.mark.parametrize(
    ("severity", "auto_fixable", "expected"),
    [
        (Severity.ERROR, True, RuleAction.APPLY_FIX),
        (Severity.ERROR, False, RuleAction.REJECT),
        (Severity.WARNING, True, RuleAction.APPLY_FIX),
        (Severity.WARNING, False, RuleAction.WARN),
        (Severity.INFO, True, RuleAction.NOTE),
        (Severity.INFO, False, RuleAction.NOTE),
    ],
)
def test_decision_matrix(severity: Severity, auto_fixable: bool, expected: RuleAction) -> None:
    assert decide(severity, auto_fixable) is expected


def test_each_action_lands_in_its_bucket() -> None:
    rule_set = RuleSet(
        name="matrix",
        version="1",
        rules=(
            _rule("R_FIX", Severity.ERROR, auto_fixable=True),
            _rule("R_REJECT", Severity.ERROR),
            _rule("R_WARN", Severity.WARNING),
            _rule("R_NOTE", Severity.INFO),
        ),
    )

    outcome = RuleEngine().evaluate({"flag": False}, rule_set)

    result = outcome.result
    assert [item.rule_id for item in result.errors] == ["R_REJECT"]
    assert [item.rule_id for item in result.warnings] == ["R_WARN"]
    assert [item.rule_id for item in result.notes] == ["R_NOTE"]
    assert [item.rule_id for item in result.downgrades] == ["R_FIX"]
    assert result.downgrades[0].original_value is False
    assert outcome.spec["flag"] is True
    assert not outcome.is_valid
    assert (result.total_rules, result.passed_rules) == (4, 0)


def test_fix_does_not_mutate_input_spec() -> None:
    spec = _spec()
    before = copy.deepcopy(spec)
    rule_set = load_rule_set_file(RULES_DIR / "accessibility.rules.yaml")

    outcome = RuleEngine().evaluate(spec, rule_set)

    assert spec == before
    assert outcome.spec is not spec
    assert outcome.spec["accessibility"]["keyboard_support"] is True


def test_keyboard_fix_records_single_downgrade() -> None:
    rule_set = load_rule_set_file(RULES_DIR / "accessibility.rules.yaml")

    outcome = RuleEngine().evaluate(_spec(), rule_set)

    assert outcome.is_valid
    assert [item.to_dict() for item in outcome.result.downgrades] == [
        {
            "rule_id": "A11Y_KEYBOARD",
            "severity": "error",
            "path": "accessibility.keyboard_support",
            "original_value": {"keyboard_support": False, "input_methods": []},
            "fixed_value": {"keyboard_support": True, "input_methods": ["keyboard"]},
            "reason": outcome.result.downgrades[0].reason,
        }
    ]
    assert outcome.spec["interaction"]["input_methods"] == ["keyboard"]
    assert outcome.result.passed_rules == 1


def test_rules_run_in_category_then_id_order() -> None:
    seen: list[str] = []

    def recorder(rule_id: str) -> Any:
        def condition(spec: Spec, ctx: RuleContext) -> Violation | None:
            seen.append(rule_id)
            return None

        return condition

    rule_set = RuleSet(
        name="ordering",
        version="1",
        rules=(
            _rule("Z_1", Severity.INFO, category="b", condition=recorder("Z_1")),
            _rule("A_2", Severity.INFO, category="b", condition=recorder("A_2")),
            _rule("M_1", Severity.INFO, category="a", condition=recorder("M_1")),
        ),
    )

    RuleEngine().evaluate({}, rule_set)

    assert seen == ["M_1", "A_2", "Z_1"]
    assert rule_set.rule_ids == ("M_1", "A_2", "Z_1")


def test_fixes_are_visible_to_later_rules() -> None:
    def needs_flag(spec: Spec, ctx: RuleContext) -> Violation | None:
        return None if spec.get("flag") else Violation(path="flag")

    rule_set = RuleSet(
        name="chain",
        version="1",
        rules=(
            _rule("A_FIX", Severity.WARNING, auto_fixable=True, category="a"),
            _rule("B_CHECK", Severity.ERROR, category="b", condition=needs_flag),
        ),
    )

    outcome = RuleEngine().evaluate({"flag": False}, rule_set)

    assert outcome.is_valid
    assert outcome.result.passed_rules == 1


def _copy_unchanged(spec: Spec, ctx: RuleContext) -> FixResult:
    return FixResult(spec={**spec}, path="ok", original_value=False, fixed_value=False)


@pytest.mark.parametrize(
    ("severity", "bucket"), [(Severity.ERROR, "errors"), (Severity.WARNING, "warnings")]
)
def test_ineffective_fix_keeps_the_violation(severity: Severity, bucket: str) -> None:
    def not_ok(spec: Spec, ctx: RuleContext) -> Violation | None:
        return None if spec.get("ok") else Violation(path="ok")

    rule_set = RuleSet(
        name="stubborn",
        version="1",
        rules=(
            _rule(
                "R_STUBBORN", severity, auto_fixable=True, condition=not_ok, fix=_copy_unchanged
            ),
        ),
    )

    outcome = RuleEngine().evaluate({"ok": False}, rule_set)

    result = outcome.result
    assert result.downgrades == ()
    assert [item.rule_id for item in getattr(result, bucket)] == ["R_STUBBORN"]
    assert outcome.is_valid is (severity is Severity.WARNING)
    assert outcome.spec == {"ok": False}
    assert result.passed_rules == 0


def test_apply_fix_without_fix_function_is_a_definition_error() -> None:
    rule = _rule("R_PLAIN", Severity.ERROR)

    with pytest.raises(RuleDefinitionError, match="R_PLAIN"):
        RuleEngine._apply_fix(rule, {}, RuleContext())


@pytest.mark.parametrize(
    ("name", "expected"),
    [("Max_Stars", "maxStars"), ("max-stars", "maxStars"), ("MaxStars", "maxStars")],
)
def test_camel_case_fix_normalizes_separators(name: str, expected: str) -> None:
    rule_set = load_rule_set_file(RULES_DIR / "core.rules.yaml")
    spec = _spec(
        properties=[
            {"name": "value", "display_name": "Value", "data_type": "Decimal", "usage": "bound"},
            {"name": name, "display_name": "Extra", "data_type": "Whole.None", "usage": "input"},
        ],
    )

    outcome = RuleEngine().evaluate(spec, rule_set)

    assert [item.rule_id for item in outcome.result.downgrades] == ["PCF_NAMING_003"]
    assert outcome.result.warnings == ()
    assert [item["name"] for item in outcome.spec["properties"]] == ["value", expected]


def test_evaluation_is_deterministic() -> None:
    rule_set = RuleSet.combine(
        "all",
        (
            load_rule_set_file(RULES_DIR / "core.rules.yaml"),
            load_rule_set_file(RULES_DIR / "accessibility.rules.yaml"),
        ),
    )
    spec = _spec(namespace="bad namespace")

    first = RuleEngine().evaluate(spec, rule_set).result.to_json()
    second = RuleEngine().evaluate(spec, rule_set).result.to_json()

    assert first == second
    assert '"PCF_NAMING_002"' in first


def test_raising_predicate_aborts_the_pass() -> None:
    def boom(spec: Spec, ctx: RuleContext) -> Violation | None:
        raise KeyError("missing")

    rule_set = RuleSet(
        name="boom", version="1", rules=(_rule("R_BOOM", Severity.ERROR, condition=boom),)
    )

    with pytest.raises(RuleEvaluationError, match="R_BOOM"):
        RuleEngine().evaluate({}, rule_set)


def test_core_rules_report_naming_and_camel_case_fix() -> None:
    rule_set = load_rule_set_file(RULES_DIR / "core.rules.yaml")
    spec = _spec(
        component_name="star_rating",
        properties=[
            {"name": "Value", "display_name": "Value", "data_type": "Decimal", "usage": "bound"}
        ],
    )

    outcome = RuleEngine().evaluate(spec, rule_set)

    assert [item.rule_id for item in outcome.result.errors] == ["PCF_NAMING_001"]
    assert [item.rule_id for item in outcome.result.downgrades] == ["PCF_NAMING_003"]
    assert outcome.spec["properties"][0]["name"] == "value"


def test_duplicate_rule_ids_are_rejected() -> None:
    with pytest.raises(RuleDefinitionError, match="duplicate rule id"):
        RuleSet(
            name="dup",
            version="1",
            rules=(_rule("R_1", Severity.INFO), _rule("R_1", Severity.WARNING)),
        )


def test_auto_fixable_rule_requires_fix() -> None:
    with pytest.raises(RuleDefinitionError, match="requires a concrete fix"):
        Rule(
            rule_id="R_1",
            category="c",
            severity=Severity.ERROR,
            condition=_always(),
            message="m",
            suggestion="s",
            auto_fixable=True,
        )


_DOC = """
schema_version: {schema_version}
rule_set: custom
version: "1.0"
rules:
  - id: R_1
    category: naming
    severity: error
    check: {check}
    message: Broken
    suggestion: Repair
    auto_fixable: {auto_fixable}
{extra}
"""


@pytest.mark.parametrize(
    ("fields", "match"),
    [
        ({"check": "does_not_exist"}, "unknown check"),
        ({"check": "pascal_case_namespace", "auto_fixable": "true"}, "has no fix"),
        ({"schema_version": 2}, "schema_version"),
        ({"extra": "    owner: someone"}, "unexpected fields"),
    ],
)
def test_rule_set_documents_are_validated(fields: dict[str, Any], match: str) -> None:
    values: dict[str, Any] = {
        "schema_version": 1,
        "check": "pascal_case_namespace",
        "auto_fixable": "false",
        "extra": "",
    }
    values.update(fields)

    with pytest.raises(RuleDefinitionError, match=match):
        load_rule_set_text(_DOC.format(**values), source="custom.rules.yaml")


def test_invalid_yaml_is_reported() -> None:
    with pytest.raises(RuleDefinitionError, match="invalid YAML"):
        load_rule_set_text("rules: [", source="broken.yaml")
