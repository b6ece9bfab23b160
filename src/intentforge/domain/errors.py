"""
intentforge — pipeline error taxonomy

File: src/intentforge/domain/errors.py
Last updated: 2026-10-18

Purpose
- Define the normalized failure classes raised by the router, rule engine, collaborators,
  and orchestrator.

What should be included in this file
- ``FailureKind`` classification consumed by the orchestrator retry policy.
- One exception class per failure family with deterministic machine-readable fields.

Functional requirements
- Budget failures name the offending metric, its total, its limit, and the full file list.
- Validation failures carry the complete violation list.
- Every error renders to a canonical ``to_dict`` payload for persistence.

Non-functional requirements
- No imports from other intentforge planes.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from enum import StrEnum
from typing import Any, ClassVar


class FailureKind(StrEnum):
    BUDGET = "budget"
    CONTRACT = "contract"
    VALIDATION = "validation"
    TRANSIENT = "transient"
    FATAL = "fatal"
    SYSTEM = "system"


class PipelineError(RuntimeError):
    """Base class for normalized pipeline failures."""

    kind: ClassVar[FailureKind] = FailureKind.FATAL

    def __init__(self, detail: str, *, code: str | None = None) -> None:
        text = " ".join(detail.split()) if isinstance(detail, str) else ""
        self.detail = text or self.__class__.__name__
        self.code = code if code is not None else self.kind.value
        super().__init__(self.detail)

    @property
    def retryable(self) -> bool:
        return self.kind is FailureKind.TRANSIENT

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "code": self.code,
            "error_type": self.__class__.__name__,
            "detail": self.detail,
        }


class BudgetExceeded(PipelineError):
    """Raised pre-flight when a routed context would exceed its budget policy."""

    kind = FailureKind.BUDGET

    def __init__(
        self,
        *,
        task: str,
        metric: str,
        total: int,
        limit: int,
        files: Sequence[str],
        exceeded: Sequence[str] = (),
    ) -> None:
        self.task = task
        self.metric = metric
        self.total = total
        self.limit = limit
        self.files = tuple(files)
        self.exceeded = tuple(exceeded) if exceeded else (metric,)
        rendered_files = ", ".join(self.files)
        super().__init__(
            f"budget exceeded for task {task}: {metric} total={total} exceeds limit={limit}; "
            f"files=[{rendered_files}]",
            code="budget_exceeded",
        )

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload.update(
            {
                "task": self.task,
                "metric": self.metric,
                "total": self.total,
                "limit": self.limit,
                "files": list(self.files),
                "exceeded": list(self.exceeded),
            }
        )
        return payload


class ContractViolation(PipelineError):
    """An external collaborator response failed structural or semantic checks."""

    kind = FailureKind.CONTRACT

    def __init__(self, collaborator: str, violations: Sequence[str]) -> None:
        self.collaborator = collaborator
        self.violations = tuple(violations)
        rendered = "; ".join(self.violations) if self.violations else "unspecified violation"
        super().__init__(
            f"{collaborator} response rejected as untrusted input: {rendered}",
            code="contract_violation",
        )

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload.update({"collaborator": self.collaborator, "violations": list(self.violations)})
        return payload


class ValidationError(PipelineError):
    """Rule violations without an auto-fix rejected the specification.

    ``warnings`` and ``downgrades`` carry the rest of the same rule pass so a rejected build
    still reports everything that was found.
    """

    kind = FailureKind.VALIDATION

    def __init__(
        self,
        stage: str,
        violations: Sequence[Mapping[str, Any]],
        *,
        warnings: Sequence[Mapping[str, Any]] = (),
        downgrades: Sequence[Mapping[str, Any]] = (),
    ) -> None:
        self.stage = stage
        self.violations = tuple(dict(item) for item in violations)
        self.warnings = tuple(dict(item) for item in warnings)
        self.downgrades = tuple(dict(item) for item in downgrades)
        ids = ", ".join(str(item.get("rule_id", "?")) for item in self.violations)
        super().__init__(
            f"specification rejected at {stage}: {len(self.violations)} violation(s) [{ids}]",
            code="validation_failed",
        )

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload.update({"stage": self.stage, "violations": [dict(v) for v in self.violations]})
        return payload


class TransientError(PipelineError):
    """Timeout, rate-limit, or network failure eligible for bounded retry."""

    kind = FailureKind.TRANSIENT

    def __init__(self, detail: str, *, reason: str = "network") -> None:
        self.reason = reason
        super().__init__(detail, code=f"transient_{reason}")


class FatalError(PipelineError):
    """Unrecoverable failure; the build is marked failed without retry."""

    kind = FailureKind.FATAL


class CapabilityNotFoundError(FatalError):
    def __init__(self, capability_id: str) -> None:
        self.capability_id = capability_id
        super().__init__(f"capability not found: {capability_id}", code="capability_not_found")


class MissingParameterError(FatalError):
    def __init__(self, task: str, parameter: str) -> None:
        self.task = task
        self.parameter = parameter
        super().__init__(
            f"task {task} requires parameter {parameter!r}", code="missing_parameter"
        )


class InvalidParameterError(FatalError):
    def __init__(self, task: str, parameter: str, value: str) -> None:
        self.task = task
        self.parameter = parameter
        self.value = value
        super().__init__(
            f"task {task} parameter {parameter!r} must be a single path segment, got {value!r}",
            code="invalid_parameter",
        )


class BuildNotFoundError(FatalError):
    def __init__(self, build_id: str) -> None:
        self.build_id = build_id
        super().__init__(f"build not found: {build_id}", code="build_not_found")


class ArtifactNotFoundError(FatalError):
    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"artifact not found: {path}", code="artifact_not_found")


class ArtifactDecodeError(FatalError):
    def __init__(self, path: str, shape: str, reason: str) -> None:
        self.path = path
        self.shape = shape
        super().__init__(
            f"artifact {path} is not a valid {shape}: {reason}", code="artifact_decode"
        )


class RuleEvaluationError(PipelineError):
    """A rule predicate or fix raised; the whole rule pass is aborted."""

    kind = FailureKind.SYSTEM

    def __init__(self, rule_id: str, reason: str) -> None:
        self.rule_id = rule_id
        super().__init__(
            f"rule {rule_id} failed to evaluate: {reason}", code="rule_evaluation_error"
        )


class RuleDefinitionError(ValueError):
    """Raised when a rule or rule set cannot be registered."""


__all__ = [
    "ArtifactDecodeError",
    "ArtifactNotFoundError",
    "BudgetExceeded",
    "BuildNotFoundError",
    "CapabilityNotFoundError",
    "ContractViolation",
    "FailureKind",
    "FatalError",
    "InvalidParameterError",
    "MissingParameterError",
    "PipelineError",
    "RuleDefinitionError",
    "RuleEvaluationError",
    "TransientError",
    "ValidationError",
]
