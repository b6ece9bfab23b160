"""Verification plane: rule engine, rule-set documents, and collaborator trust boundaries."""

from intentforge.verification_plane.builtin_rules import (
    BUILTIN_CHECKS,
    CheckCatalog,
    RuleCheck,
    capability_rule_set,
    register_check,
)
from intentforge.verification_plane.contracts import (
    IntentCheck,
    check_capability,
    check_intent_result,
    check_spec_trust,
    final_validate,
    is_contract_version_supported,
    schema_issues,
)
from intentforge.verification_plane.rule_engine import (
    DECISION_MATRIX,
    FixResult,
    Rule,
    RuleAction,
    RuleContext,
    RuleEngine,
    RuleOutcome,
    RuleSet,
    Violation,
    decide,
)
from intentforge.verification_plane.rule_sets import (
    load_rule_set_file,
    load_rule_set_text,
    parse_rule_set_document,
)

__all__ = [
    "BUILTIN_CHECKS",
    "DECISION_MATRIX",
    "CheckCatalog",
    "FixResult",
    "IntentCheck",
    "Rule",
    "RuleAction",
    "RuleCheck",
    "RuleContext",
    "RuleEngine",
    "RuleOutcome",
    "RuleSet",
    "Violation",
    "capability_rule_set",
    "check_capability",
    "check_intent_result",
    "check_spec_trust",
    "decide",
    "final_validate",
    "is_contract_version_supported",
    "load_rule_set_file",
    "load_rule_set_text",
    "parse_rule_set_document",
    "register_check",
    "schema_issues",
]
