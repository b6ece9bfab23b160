"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, StrEnum
from typing import Any, NoReturn, TypeVar

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TEnum = TypeVar("TEnum", bound=Enum)


class Task(StrEnum):
    """Closed set of routing operations; each maps to a fixed artifact list."""

    INTERPRET_INTENT = "interpret_intent"
    MATCH_CAPABILITY = "match_capability"
    GENERATE_COMPONENT_SPEC = "generate_component_spec"
    VALIDATE_RULES = "validate_rules"
    VALIDATE_FINAL = "validate_final"
    LOAD_SCHEMA = "load_schema"
    LOAD_CAPABILITY = "load_capability"
    LOAD_PROMPT = "load_prompt"


class ArtifactShape(StrEnum):
    JSON_SCHEMA = "json_schema"
    RULE_SET = "rule_set"
    CAPABILITY = "capability"
    JSON = "json"
    TEXT = "text"


class Stage(StrEnum):
    INIT = "init"
    INTERPRET_INTENT = "interpret_intent"
    MATCH_CAPABILITY = "match_capability"
    GENERATE_SPEC = "generate_spec"
    VALIDATE_RULES = "validate_rules"
    FINAL_VALIDATE = "final_validate"
    GENERATE_CODE = "generate_code"
    PACKAGE = "package"

    @property
    def index(self) -> int:
        return STAGE_ORDER.index(self)

    @property
    def next(self) -> Stage | None:
        position = self.index + 1
        return STAGE_ORDER[position] if position < len(STAGE_ORDER) else None

    @classmethod
    def from_index(cls, index: int) -> Stage:
        if not 0 <= index < len(STAGE_ORDER):
            raise ValueError(f"stage index out of range: {index}")
        return STAGE_ORDER[index]


STAGE_ORDER: tuple[Stage, ...] = tuple(Stage)


class BuildStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class BuildOutcome(StrEnum):
    SUCCESS = "success"
    REJECTED = "rejected"
    CLARIFICATION_REQUIRED = "clarification_required"
    ERROR = "error"


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True, slots=True)
class BudgetPolicy:
    """Pre-flight limits applied to every routed context."""

    max_cost: int
    max_files: int
    max_bytes: int

    def __post_init__(self) -> None:
        for name in ("max_cost", "max_files", "max_bytes"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"BudgetPolicy.{name} must be a positive integer")

    def to_dict(self) -> dict[str, int]:
        return {
            "max_cost": self.max_cost,
            "max_files": self.max_files,
            "max_bytes": self.max_bytes,
        }


@dataclass(frozen=True, slots=True)
class ArtifactCost:
    path: str
    estimated_cost: int
    size_bytes: int
    cache_hit: bool

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "path": self.path,
            "estimated_cost": self.estimated_cost,
            "size_bytes": self.size_bytes,
            "cache_hit": self.cache_hit,
        }


@dataclass(frozen=True, slots=True)
class ContextMetadata:
    task: Task
    files_loaded: tuple[str, ...]
    estimated_cost: int
    estimated_bytes: int
    cache_hit: bool
    cache_hits: tuple[str, ...]
    cache_misses: tuple[str, ...]
    created_at: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "task": self.task.value,
            "files_loaded": list(self.files_loaded),
            "estimated_cost": self.estimated_cost,
            "estimated_bytes": self.estimated_bytes,
            "cache_hit": self.cache_hit,
            "cache_hits": list(self.cache_hits),
            "cache_misses": list(self.cache_misses),
            "created_at": self.created_at,
        }


@dataclass(frozen=True, slots=True)
class Context:
    """Minimal bundle of deserialized artifacts handed to one pipeline stage."""

    metadata: ContextMetadata
    artifacts: Mapping[str, Any]
    costs: tuple[ArtifactCost, ...] = ()

    def require(self, key: str) -> Any:
        if key not in self.artifacts:
            raise KeyError(f"context for {self.metadata.task.value} has no artifact {key!r}")
        return self.artifacts[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self.artifacts.get(key, default)


@dataclass(frozen=True, slots=True)
class ForbiddenBehavior:
    behavior: str
    reason: str
    alternative: str | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        return {"behavior": self.behavior, "reason": self.reason, "alternative": self.alternative}


@dataclass(frozen=True, slots=True)
class Capability:
    """Declared, bounded feature set gating what a specification may request."""

    capability_id: str
    display_name: str
    classification: str
    supported_features: tuple[str, ...]
    limits: Mapping[str, int | float]
    forbidden: tuple[ForbiddenBehavior, ...] = ()
    description: str = ""

    def supports(self, feature: str) -> bool:
        return feature in self.supported_features

    def limit_for(self, customization_key: str) -> int | float | None:
        """Return the ``max<Key>`` limit bounding a customization value, if declared."""

        if not customization_key:
            return None
        return self.limits.get("max" + customization_key[0].upper() + customization_key[1:])

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "capability_id": self.capability_id,
            "display_name": self.display_name,
            "classification": self.classification,
            "description": self.description,
            "supported_features": list(self.supported_features),
            "limits": {key: self.limits[key] for key in sorted(self.limits)},
            "forbidden": [item.to_dict() for item in self.forbidden],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object], *, path: str = "Capability") -> Capability:
        payload = _expect_mapping(data, path)
        features_raw = payload.get("supported_features", [])
        if not isinstance(features_raw, list):
            _fail(f"{path}.supported_features", "expected array")
        features: list[str] = []
        for index, item in enumerate(features_raw):
            item_path = f"{path}.supported_features[{index}]"
            if isinstance(item, Mapping):
                features.append(_as_str(item.get("feature_id"), f"{item_path}.feature_id"))
            else:
                features.append(_as_str(item, item_path))

        limits_raw = _expect_mapping(payload.get("limits", {}), f"{path}.limits")
        limits: dict[str, int | float] = {}
        for key in sorted(limits_raw):
            value = limits_raw[key]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                _fail(f"{path}.limits.{key}", "expected number")
            if isinstance(value, float) and not math.isfinite(value):
                _fail(f"{path}.limits.{key}", "must be finite")
            limits[key] = value

        forbidden_raw = payload.get("forbidden", [])
        if not isinstance(forbidden_raw, list):
            _fail(f"{path}.forbidden", "expected array")
        forbidden: list[ForbiddenBehavior] = []
        for index, item in enumerate(forbidden_raw):
            item_path = f"{path}.forbidden[{index}]"
            entry = _expect_mapping(item, item_path)
            alternative = entry.get("alternative")
            forbidden.append(
                ForbiddenBehavior(
                    behavior=_as_str(entry.get("behavior"), f"{item_path}.behavior"),
                    reason=_as_str(entry.get("reason"), f"{item_path}.reason"),
                    alternative=(
                        _as_str(alternative, f"{item_path}.alternative")
                        if alternative is not None
                        else None
                    ),
                )
            )

        return cls(
            capability_id=_as_str(payload.get("capability_id"), f"{path}.capability_id"),
            display_name=_as_str(payload.get("display_name"), f"{path}.display_name"),
            classification=_as_str(
                payload.get("classification", "unclassified"), f"{path}.classification"
            ),
            description=str(payload.get("description", "")),
            supported_features=tuple(features),
            limits=limits,
            forbidden=tuple(forbidden),
        )


@dataclass(frozen=True, slots=True)
class IntentResult:
    """Untrusted interpreter response; checked by the intent contract before use."""

    candidate_intent: Mapping[str, Any] | None
    confidence: float
    unmapped_phrases: tuple[str, ...] | None
    needs_clarification: bool
    version: str
    clarification_question: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "candidate_intent": (
                dict(self.candidate_intent) if self.candidate_intent is not None else None
            ),
            "confidence": self.confidence,
            "unmapped_phrases": (
                list(self.unmapped_phrases) if self.unmapped_phrases is not None else None
            ),
            "needs_clarification": self.needs_clarification,
            "version": self.version,
            "clarification_question": self.clarification_question,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> IntentResult:
        phrases = data.get("unmapped_phrases")
        return cls(
            candidate_intent=data.get("candidate_intent"),
            confidence=data.get("confidence"),  # type: ignore[arg-type]
            unmapped_phrases=tuple(phrases) if isinstance(phrases, list) else None,
            needs_clarification=bool(data.get("needs_clarification")),
            version=str(data.get("version", "")),
            clarification_question=data.get("clarification_question"),
        )


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    rule_id: str
    category: str
    severity: Severity
    message: str
    suggestion: str
    auto_fixable: bool
    path: str = ""

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "rule_id": self.rule_id,
            "category": self.category,
            "severity": self.severity.value,
            "message": self.message,
            "suggestion": self.suggestion,
            "auto_fixable": self.auto_fixable,
            "path": self.path,
        }


@dataclass(frozen=True, slots=True)
class Downgrade:
    """Audit record of an automatically applied fix."""

    rule_id: str
    severity: Severity
    path: str
    original_value: JSONValue
    fixed_value: JSONValue
    reason: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "rule_id": self.rule_id,
            "severity": self.severity.value,
            "path": self.path,
            "original_value": self.original_value,
            "fixed_value": self.fixed_value,
            "reason": self.reason,
        }


@dataclass(frozen=True, slots=True)
class ValidationResult:
    errors: tuple[ValidationIssue, ...]
    warnings: tuple[ValidationIssue, ...]
    downgrades: tuple[Downgrade, ...]
    notes: tuple[ValidationIssue, ...]
    total_rules: int
    passed_rules: int
    rule_set_version: str = ""

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "is_valid": self.is_valid,
            "errors": [item.to_dict() for item in self.errors],
            "warnings": [item.to_dict() for item in self.warnings],
            "downgrades": [item.to_dict() for item in self.downgrades],
            "notes": [item.to_dict() for item in self.notes],
            "total_rules": self.total_rules,
            "passed_rules": self.passed_rules,
            "rule_set_version": self.rule_set_version,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def merge(cls, *results: ValidationResult) -> ValidationResult:
        return cls(
            errors=tuple(item for result in results for item in result.errors),
            warnings=tuple(item for result in results for item in result.warnings),
            downgrades=tuple(item for result in results for item in result.downgrades),
            notes=tuple(item for result in results for item in result.notes),
            total_rules=sum(result.total_rules for result in results),
            passed_rules=sum(result.passed_rules for result in results),
            rule_set_version="+".join(
                result.rule_set_version for result in results if result.rule_set_version
            ),
        )


@dataclass(frozen=True, slots=True)
class StageRecord:
    """One committed stage output, keyed by ``(build_id, stage)``."""

    build_id: str
    stage: Stage
    artifact: Mapping[str, Any]
    completed_at: str
    attempts: int = 1
    duration_ms: int = 0
    status: str = "committed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "build_id": self.build_id,
            "stage": self.stage.value,
            "stage_index": self.stage.index,
            "artifact": dict(self.artifact),
            "completed_at": self.completed_at,
            "attempts": self.attempts,
            "duration_ms": self.duration_ms,
            "status": self.status,
        }


@dataclass(frozen=True, slots=True)
class RetryState:
    """Pending retry of a transient stage failure: which stage, which attempt, and when."""

    stage: Stage
    attempt: int
    next_retry_at: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "stage": self.stage.value,
            "attempt": self.attempt,
            "next_retry_at": self.next_retry_at,
        }


@dataclass(slots=True)
class BuildState:
    """Top-level build record tracking the last committed stage and overall status."""

    build_id: str
    digest: str
    status: BuildStatus
    current_stage: Stage
    request: Mapping[str, Any]
    capability_id: str
    contract_version: str
    created_at: str
    updated_at: str
    failure: Mapping[str, Any] | None = None
    stage_artifacts: dict[Stage, Mapping[str, Any]] = field(default_factory=dict)
    retry: RetryState | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in {BuildStatus.COMPLETED, BuildStatus.FAILED}

    def to_dict(self) -> dict[str, Any]:
        return {
            "build_id": self.build_id,
            "digest": self.digest,
            "status": self.status.value,
            "current_stage": self.current_stage.value,
            "request": dict(self.request),
            "capability_id": self.capability_id,
            "contract_version": self.contract_version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "failure": dict(self.failure) if self.failure is not None else None,
            "retry": self.retry.to_dict() if self.retry is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> BuildState:
        payload = _expect_mapping(data, "BuildState")
        failure = payload.get("failure")
        request = payload.get("request", {})
        return cls(
            build_id=_as_str(payload.get("build_id"), "BuildState.build_id"),
            digest=_as_str(payload.get("digest"), "BuildState.digest"),
            status=_as_enum(BuildStatus, payload.get("status"), "BuildState.status"),
            current_stage=_as_enum(Stage, payload.get("current_stage"), "BuildState.current_stage"),
            request=_expect_mapping(request, "BuildState.request"),
            capability_id=_as_str(payload.get("capability_id"), "BuildState.capability_id"),
            contract_version=_as_str(
                payload.get("contract_version"), "BuildState.contract_version"
            ),
            created_at=_as_str(payload.get("created_at"), "BuildState.created_at"),
            updated_at=_as_str(payload.get("updated_at"), "BuildState.updated_at"),
            failure=_expect_mapping(failure, "BuildState.failure") if failure is not None else None,
        )


@dataclass(frozen=True, slots=True)
class BuildResult:
    """Core surface returned by ``PipelineOrchestrator.execute``."""

    status: BuildOutcome
    build_id: str | None
    artifact_path: str | None = None
    errors: tuple[Mapping[str, Any], ...] = ()
    warnings: tuple[Mapping[str, Any], ...] = ()
    downgrades: tuple[Mapping[str, Any], ...] = ()
    stage_timings_ms: Mapping[str, int] = field(default_factory=dict)
    failure: Mapping[str, Any] | None = None
    clarification: Mapping[str, Any] | None = None
    resumed: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status is BuildOutcome.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "build_id": self.build_id,
            "artifact_path": self.artifact_path,
            "errors": [dict(item) for item in self.errors],
            "warnings": [dict(item) for item in self.warnings],
            "downgrades": [dict(item) for item in self.downgrades],
            "stage_timings_ms": dict(self.stage_timings_ms),
            "failure": dict(self.failure) if self.failure is not None else None,
            "clarification": dict(self.clarification) if self.clarification is not None else None,
            "resumed": self.resumed,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> BuildResult:
        payload = _expect_mapping(data, "BuildResult")
        failure = payload.get("failure")
        clarification = payload.get("clarification")
        build_id = payload.get("build_id")
        artifact_path = payload.get("artifact_path")
        timings = _expect_mapping(payload.get("stage_timings_ms", {}), "BuildResult.timings")
        return cls(
            status=_as_enum(BuildOutcome, payload.get("status"), "BuildResult.status"),
            build_id=build_id if isinstance(build_id, str) else None,
            artifact_path=artifact_path if isinstance(artifact_path, str) else None,
            errors=_mapping_items(payload.get("errors", []), "BuildResult.errors"),
            warnings=_mapping_items(payload.get("warnings", []), "BuildResult.warnings"),
            downgrades=_mapping_items(payload.get("downgrades", []), "BuildResult.downgrades"),
            stage_timings_ms={key: int(value) for key, value in timings.items()},
            failure=(
                _expect_mapping(failure, "BuildResult.failure") if failure is not None else None
            ),
            clarification=(
                _expect_mapping(clarification, "BuildResult.clarification")
                if clarification is not None
                else None
            ),
            resumed=bool(payload.get("resumed", False)),
        )


def _mapping_items(value: object, path: str) -> tuple[dict[str, Any], ...]:
    if not isinstance(value, list):
        _fail(path, "expected array")
    return tuple(_expect_mapping(item, f"{path}[{index}]") for index, item in enumerate(value))


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _expect_mapping(value: object, path: str) -> dict[str, Any]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    parsed: dict[str, Any] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item
    return parsed


def _as_str(value: object, path: str) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    parsed = value.strip()
    if not parsed:
        _fail(path, "must not be empty")
    return parsed


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(str(item.value) for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


__all__ = [
    "STAGE_ORDER",
    "ArtifactCost",
    "ArtifactShape",
    "BudgetPolicy",
    "BuildOutcome",
    "BuildResult",
    "BuildState",
    "BuildStatus",
    "Capability",
    "Context",
    "ContextMetadata",
    "Downgrade",
    "ForbiddenBehavior",
    "IntentResult",
    "JSONValue",
    "RetryState",
    "Severity",
    "Stage",
    "StageRecord",
    "Task",
    "ValidationIssue",
    "ValidationResult",
]
