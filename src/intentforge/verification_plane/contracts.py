"""
intentforge — collaborator trust boundaries

File: src/intentforge/verification_plane/contracts.py
Last updated: 2026-10-18

Purpose
- Treat every external collaborator response as untrusted and check it before the pipeline
  consumes it.

What should be included in this file
- Contract version compatibility (MAJOR.MINOR).
- Intent interpreter response checks, including the clarification threshold.
- Capability source and spec generator trust-boundary checks.
- Final validation: JSON Schema compliance plus capability-bound rules.

Functional requirements
- Contract checks collect every violation and raise one ``ContractViolation``; they never
  repair a response.
- A missing capability is ``CapabilityNotFoundError``.
- Final validation returns a ``ValidationResult``; the caller decides rejection.

Non-functional requirements
- Deterministic ordering of collected violations and schema errors.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Final

import jsonschema

from intentforge.constants import (
    CLARIFICATION_CONFIDENCE_THRESHOLD,
    CONTRACT_VERSION,
    MIN_SUPPORTED_CONTRACT_VERSION,
)
from intentforge.domain.errors import CapabilityNotFoundError, ContractViolation
from intentforge.domain.models import (
    Capability,
    IntentResult,
    Severity,
    ValidationIssue,
    ValidationResult,
)
from intentforge.verification_plane.builtin_rules import capability_rule_set
from intentforge.verification_plane.rule_engine import RuleContext, RuleEngine

SCHEMA_RULE_ID: Final[str] = "SCHEMA_001"

INTENT_INTERPRETER: Final[str] = "intent_interpreter"
CAPABILITY_SOURCE: Final[str] = "capability_source"
SPEC_GENERATOR: Final[str] = "spec_generator"


def parse_contract_version(version: object) -> tuple[int, int] | None:
    if not isinstance(version, str):
        return None
    parts = version.strip().split(".")
    if len(parts) != 2 or not all(part.isdigit() for part in parts):
        return None
    return int(parts[0]), int(parts[1])


def is_contract_version_supported(
    version: object,
    *,
    minimum: str = MIN_SUPPORTED_CONTRACT_VERSION,
) -> bool:
    """MAJOR must match the minimum exactly; MINOR must be at least the minimum's."""

    parsed = parse_contract_version(version)
    floor = parse_contract_version(minimum)
    if parsed is None or floor is None:
        return False
    return parsed[0] == floor[0] and parsed[1] >= floor[1]


@dataclass(frozen=True, slots=True)
class IntentCheck:
    """Outcome of an accepted intent response."""

    needs_clarification: bool
    conservative_clarification: bool


def check_intent_result(
    result: IntentResult,
    *,
    confidence_threshold: float = CLARIFICATION_CONFIDENCE_THRESHOLD,
    minimum_version: str = MIN_SUPPORTED_CONTRACT_VERSION,
    schema: Mapping[str, Any] | None = None,
) -> IntentCheck:
    """Raise ``ContractViolation`` listing every broken interpreter guarantee.

    When ``schema`` is given, a present ``candidate_intent`` must also conform to it.
    """

    violations: list[str] = []
    if not is_contract_version_supported(result.version, minimum=minimum_version):
        violations.append(
            f"contract version {result.version!r} is not compatible with {minimum_version}"
        )

    confidence = result.confidence
    confidence_ok = (
        isinstance(confidence, (int, float))
        and not isinstance(confidence, bool)
        and math.isfinite(confidence)
    )
    if not confidence_ok:
        violations.append(f"confidence must be a number, got {confidence!r}")
    elif not 0.0 <= confidence <= 1.0:
        violations.append(f"confidence out of range: {confidence} (must be 0.0-1.0)")

    if result.unmapped_phrases is None:
        violations.append("unmapped_phrases must be a list")

    if not result.needs_clarification:
        if result.candidate_intent is None:
            violations.append("candidate_intent is missing but needs_clarification is false")
        elif not isinstance(result.candidate_intent, Mapping):
            violations.append("candidate_intent must be an object")
        elif schema is not None:
            violations.extend(
                f"candidate_intent{_location(error.path, prefix='.')}: {error.message}"
                for error in _schema_errors(result.candidate_intent, schema)
            )
        if confidence_ok and confidence < confidence_threshold:
            violations.append(
                f"confidence {confidence} is below {confidence_threshold} "
                "but needs_clarification is false"
            )

    if violations:
        raise ContractViolation(INTENT_INTERPRETER, violations)

    return IntentCheck(
        needs_clarification=result.needs_clarification,
        conservative_clarification=(
            result.needs_clarification and float(confidence) >= confidence_threshold
        ),
    )


def check_capability(capability: Capability | None, requested_id: str) -> Capability:
    if capability is None:
        raise CapabilityNotFoundError(requested_id)
    if not isinstance(capability, Capability):
        raise ContractViolation(
            CAPABILITY_SOURCE, [f"expected Capability, got {type(capability).__name__}"]
        )
    if capability.capability_id != requested_id:
        raise ContractViolation(
            CAPABILITY_SOURCE,
            [
                f"capability id mismatch: expected {requested_id!r}, "
                f"got {capability.capability_id!r}"
            ],
        )
    return capability


def check_spec_trust(
    spec: object,
    expected_capability_id: str,
    *,
    minimum_version: str = MIN_SUPPORTED_CONTRACT_VERSION,
) -> dict[str, Any]:
    """Structural trust checks on generator output; returns a plain-dict copy."""

    if not isinstance(spec, Mapping):
        raise ContractViolation(SPEC_GENERATOR, [f"expected object, got {type(spec).__name__}"])

    violations: list[str] = []
    version = spec.get("version")
    if not is_contract_version_supported(version, minimum=minimum_version):
        violations.append(f"contract version {version!r} is not compatible with {minimum_version}")
    for key in ("component_name", "display_name"):
        value = spec.get(key)
        if not isinstance(value, str) or not value.strip():
            violations.append(f"missing {key}")
    properties = spec.get("properties")
    if not isinstance(properties, list):
        violations.append("missing properties collection")
    elif any(not isinstance(item, Mapping) for item in properties):
        violations.append("properties collection contains non-object items")

    capabilities = spec.get("capabilities")
    actual_id = capabilities.get("capability_id") if isinstance(capabilities, Mapping) else None
    if actual_id != expected_capability_id:
        violations.append(
            f"capability id mismatch: expected {expected_capability_id!r}, got {actual_id!r}"
        )

    if violations:
        raise ContractViolation(SPEC_GENERATOR, violations)
    return dict(spec)


def schema_issues(
    spec: Mapping[str, Any], schema: Mapping[str, Any]
) -> tuple[ValidationIssue, ...]:
    """JSON Schema (Draft 2020-12) violations as error-level issues, sorted by location."""

    issues: list[ValidationIssue] = []
    for error in _schema_errors(spec, schema):
        location = _location(error.path)
        issues.append(
            ValidationIssue(
                rule_id=SCHEMA_RULE_ID,
                category="schema",
                severity=Severity.ERROR,
                message=f"Specification does not match the component schema: {error.message}",
                suggestion="Regenerate the specification so it conforms to the schema",
                auto_fixable=False,
                path=location,
            )
        )
    return tuple(issues)


def _schema_errors(
    document: object, schema: Mapping[str, Any]
) -> list[jsonschema.ValidationError]:
    validator = jsonschema.Draft202012Validator(schema)
    return sorted(
        validator.iter_errors(document),
        key=lambda error: ([str(part) for part in error.path], error.message),
    )


def _location(path: Iterable[object], *, prefix: str = "") -> str:
    joined = ".".join(str(part) for part in path)
    return f"{prefix}{joined}" if joined else ""


def final_validate(
    spec: Mapping[str, Any],
    *,
    schema: Mapping[str, Any],
    capability: Capability,
    engine: RuleEngine | None = None,
) -> ValidationResult:
    """Schema compliance merged with the capability rule pass."""

    issues = schema_issues(spec, schema)
    schema_result = ValidationResult(
        errors=issues,
        warnings=(),
        downgrades=(),
        notes=(),
        total_rules=1,
        passed_rules=0 if issues else 1,
        rule_set_version=f"component-schema@{CONTRACT_VERSION}",
    )
    rule_engine = engine if engine is not None else RuleEngine()
    outcome = rule_engine.evaluate(spec, capability_rule_set(), RuleContext(capability=capability))
    return ValidationResult.merge(schema_result, outcome.result)


__all__ = [
    "CAPABILITY_SOURCE",
    "INTENT_INTERPRETER",
    "SCHEMA_RULE_ID",
    "SPEC_GENERATOR",
    "IntentCheck",
    "check_capability",
    "check_intent_result",
    "check_spec_trust",
    "final_validate",
    "is_contract_version_supported",
    "parse_contract_version",
    "schema_issues",
]
