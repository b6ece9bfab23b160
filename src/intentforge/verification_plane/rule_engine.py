"""
intentforge — rule engine

File: src/intentforge/verification_plane/rule_engine.py
Last updated: 2026-10-18

Purpose
- Evaluate an ordered, versioned rule set against a candidate component specification and
  decide, per violated rule, whether to reject, auto-fix, warn, or note.

What should be included in this file
- Rule / RuleSet definitions with registration-time checks.
- The single severity x auto_fixable decision matrix.
- A single-pass evaluator producing a canonical ValidationResult plus the fixed specification.

Functional requirements
- Rules run in ``(category, id)`` order; fixes are visible to later predicates.
- Fixes return a new specification; the input is never mutated.
- A fix counts only when its rule no longer fires on the fixed specification; otherwise the
  violation is reported at the rule's severity and the fix is dropped.
- A raising predicate or fix aborts the pass with ``RuleEvaluationError``.
- Any remaining error makes the result invalid.

Non-functional requirements
- Deterministic: the same rule set on the same specification yields byte-identical output.
- No retries and no I/O.
"""

from __future__ import annotations

import copy
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Final

import structlog

from intentforge.domain.errors import RuleDefinitionError, RuleEvaluationError
from intentforge.domain.models import (
    Capability,
    Downgrade,
    JSONValue,
    Severity,
    ValidationIssue,
    ValidationResult,
)

Spec = Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class RuleContext:
    """Read-only inputs a rule may consult besides the specification itself."""

    capability: Capability | None = None


@dataclass(frozen=True, slots=True)
class Violation:
    """Where a predicate found a problem, with an optional detail appended to the message."""

    path: str
    detail: str = ""


@dataclass(frozen=True, slots=True)
class FixResult:
    spec: dict[str, Any]
    path: str
    original_value: JSONValue
    fixed_value: JSONValue


Condition = Callable[[Spec, RuleContext], "Violation | None"]
Fix = Callable[[Spec, RuleContext], FixResult]


class RuleAction(StrEnum):
    APPLY_FIX = "apply_fix"
    REJECT = "reject"
    WARN = "warn"
    NOTE = "note"


# Every (severity, auto_fixable) pair resolves here and nowhere else.
DECISION_MATRIX: Final[Mapping[tuple[Severity, bool], RuleAction]] = MappingProxyType(
    {
        (Severity.ERROR, True): RuleAction.APPLY_FIX,
        (Severity.ERROR, False): RuleAction.REJECT,
        (Severity.WARNING, True): RuleAction.APPLY_FIX,
        (Severity.WARNING, False): RuleAction.WARN,
        (Severity.INFO, True): RuleAction.NOTE,
        (Severity.INFO, False): RuleAction.NOTE,
    }
)


def decide(severity: Severity, auto_fixable: bool) -> RuleAction:
    return DECISION_MATRIX[(Severity(severity), bool(auto_fixable))]


@dataclass(frozen=True, slots=True)
class Rule:
    """One validation rule: a pure predicate plus an optional machine-applicable fix."""

    rule_id: str
    category: str
    severity: Severity
    condition: Condition
    message: str
    suggestion: str
    auto_fixable: bool = False
    fix: Fix | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.rule_id, str) or not self.rule_id.strip():
            raise RuleDefinitionError("rule_id must be a non-empty string")
        if not isinstance(self.category, str) or not self.category.strip():
            raise RuleDefinitionError(f"rule {self.rule_id}: category must be a non-empty string")
        if not isinstance(self.severity, Severity):
            try:
                object.__setattr__(self, "severity", Severity(self.severity))
            except ValueError as exc:
                raise RuleDefinitionError(
                    f"rule {self.rule_id}: unknown severity {self.severity!r}"
                ) from exc
        if not callable(self.condition):
            raise RuleDefinitionError(f"rule {self.rule_id}: condition must be callable")
        if self.auto_fixable and self.fix is None:
            raise RuleDefinitionError(
                f"rule {self.rule_id}: auto_fixable=true requires a concrete fix function"
            )
        if self.fix is not None and not callable(self.fix):
            raise RuleDefinitionError(f"rule {self.rule_id}: fix must be callable")

    @property
    def action(self) -> RuleAction:
        return decide(self.severity, self.auto_fixable)

    @property
    def sort_key(self) -> tuple[str, str]:
        return (self.category, self.rule_id)


@dataclass(frozen=True, slots=True)
class RuleSet:
    """Versioned, deterministically ordered collection of rules."""

    name: str
    version: str
    rules: tuple[Rule, ...]

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for rule in self.rules:
            if rule.rule_id in seen:
                raise RuleDefinitionError(f"duplicate rule id {rule.rule_id!r} in {self.name}")
            seen.add(rule.rule_id)
        object.__setattr__(self, "rules", tuple(sorted(self.rules, key=lambda r: r.sort_key)))

    @property
    def label(self) -> str:
        return f"{self.name}@{self.version}"

    @property
    def rule_ids(self) -> tuple[str, ...]:
        return tuple(rule.rule_id for rule in self.rules)

    @classmethod
    def combine(cls, name: str, rule_sets: Iterable[RuleSet]) -> RuleSet:
        """Merge several rule sets into one ordered pass; duplicate ids are rejected."""

        parts = tuple(rule_sets)
        return cls(
            name=name,
            version="+".join(part.label for part in parts),
            rules=tuple(rule for part in parts for rule in part.rules),
        )


@dataclass(frozen=True, slots=True)
class RuleOutcome:
    spec: dict[str, Any]
    result: ValidationResult

    @property
    def is_valid(self) -> bool:
        return self.result.is_valid


class RuleEngine:
    """Single-pass evaluator applying ``DECISION_MATRIX`` to every violated rule."""

    def __init__(self, *, logger: Any | None = None) -> None:
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def evaluate(
        self,
        spec: Spec,
        rule_set: RuleSet,
        context: RuleContext | None = None,
    ) -> RuleOutcome:
        started = time.perf_counter()
        ctx = context if context is not None else RuleContext()
        current: dict[str, Any] = copy.deepcopy(dict(spec))

        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []
        downgrades: list[Downgrade] = []
        notes: list[ValidationIssue] = []
        passed = 0

        for rule in rule_set.rules:
            violation = self._check(rule, current, ctx)
            if violation is None:
                passed += 1
                continue

            action = rule.action
            if action is RuleAction.APPLY_FIX:
                fixed = self._apply_fix(rule, current, ctx)
                remaining = self._check(rule, fixed.spec, ctx)
                if remaining is not None:
                    # An ineffective fix is discarded; the violation stands.
                    target = errors if rule.severity is Severity.ERROR else warnings
                    target.append(_issue(rule, remaining))
                    continue
                current = fixed.spec
                downgrades.append(
                    Downgrade(
                        rule_id=rule.rule_id,
                        severity=rule.severity,
                        path=fixed.path,
                        original_value=fixed.original_value,
                        fixed_value=fixed.fixed_value,
                        reason=rule.message,
                    )
                )
            elif action is RuleAction.REJECT:
                errors.append(_issue(rule, violation))
            elif action is RuleAction.WARN:
                warnings.append(_issue(rule, violation))
            else:
                notes.append(_issue(rule, violation))

        result = ValidationResult(
            errors=tuple(errors),
            warnings=tuple(warnings),
            downgrades=tuple(downgrades),
            notes=tuple(notes),
            total_rules=len(rule_set.rules),
            passed_rules=passed,
            rule_set_version=rule_set.label,
        )
        self._logger.info(
            "rule_pass_completed",
            rule_set=rule_set.label,
            total_rules=result.total_rules,
            passed_rules=result.passed_rules,
            errors=len(result.errors),
            warnings=len(result.warnings),
            downgrades=len(result.downgrades),
            notes=len(result.notes),
            is_valid=result.is_valid,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        return RuleOutcome(spec=current, result=result)

    @staticmethod
    def _check(rule: Rule, spec: dict[str, Any], ctx: RuleContext) -> Violation | None:
        try:
            violation = rule.condition(spec, ctx)
        except Exception as exc:  # noqa: BLE001
            raise RuleEvaluationError(rule.rule_id, f"predicate raised {exc!r}") from exc
        if violation is not None and not isinstance(violation, Violation):
            raise RuleEvaluationError(
                rule.rule_id, f"predicate returned {type(violation).__name__}, expected Violation"
            )
        return violation

    @staticmethod
    def _apply_fix(rule: Rule, spec: dict[str, Any], ctx: RuleContext) -> FixResult:
        if rule.fix is None:
            raise RuleDefinitionError(f"rule {rule.rule_id}: auto-fix selected without a fix")
        snapshot = copy.deepcopy(spec)
        try:
            fixed = rule.fix(snapshot, ctx)
        except Exception as exc:  # noqa: BLE001
            raise RuleEvaluationError(rule.rule_id, f"fix raised {exc!r}") from exc
        if not isinstance(fixed, FixResult) or not isinstance(fixed.spec, dict):
            raise RuleEvaluationError(rule.rule_id, "fix must return a FixResult with a new spec")
        if fixed.spec is spec:
            raise RuleEvaluationError(rule.rule_id, "fix returned the input specification")
        return fixed


def _issue(rule: Rule, violation: Violation) -> ValidationIssue:
    message = f"{rule.message}: {violation.detail}" if violation.detail else rule.message
    return ValidationIssue(
        rule_id=rule.rule_id,
        category=rule.category,
        severity=rule.severity,
        message=message,
        suggestion=rule.suggestion,
        auto_fixable=rule.auto_fixable,
        path=violation.path,
    )


__all__ = [
    "DECISION_MATRIX",
    "Condition",
    "Fix",
    "FixResult",
    "Rule",
    "RuleAction",
    "RuleContext",
    "RuleEngine",
    "RuleOutcome",
    "RuleSet",
    "Spec",
    "Violation",
    "decide",
]
