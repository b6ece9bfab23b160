"""
intentforge — configuration schema and validation.

File: src/intentforge/config/schema.py
Last updated: 2026-10-18

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Profile overlay validation and deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject retry budgets on deterministic stages.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from intentforge.constants import (
    BUNDLED_ARTIFACT_ROOT,
    CLARIFICATION_CONFIDENCE_THRESHOLD,
    CONFIG_SCHEMA_VERSION,
    CONTRACT_VERSION,
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_MAX_BYTES,
    DEFAULT_MAX_COST,
    DEFAULT_MAX_FILES,
    DEFAULT_SIZE_ESTIMATE,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("strict", "lenient")

# Stage names accepted in ``retry.stage_max_attempts``.
STAGE_NAMES: Final[tuple[str, ...]] = (
    "init",
    "interpret_intent",
    "match_capability",
    "generate_spec",
    "validate_rules",
    "final_validate",
    "generate_code",
    "package",
)
# Stages that call no external collaborator and therefore never retry.
DETERMINISTIC_STAGES: Final[frozenset[str]] = frozenset(
    {"init", "validate_rules", "final_validate"}
)

_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_CONTRACT_VERSION_PATTERN = re.compile(r"^\d+\.\d+$")
_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "apikey", "credential", "credentials"}
)

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "artifact_root"),
    ("paths", "state_db"),
    ("paths", "output_root"),
    ("observability", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class RouterConfig(TypedDict):
    max_cost: int
    max_files: int
    max_bytes: int
    enable_caching: bool
    cache_ttl_seconds: float
    validate_on_load: bool
    default_size_estimate: int


class IntentConfig(TypedDict):
    confidence_threshold: float
    contract_version: str


class RetryConfig(TypedDict):
    initial_delay_seconds: float
    multiplier: float
    max_delay_seconds: float
    stage_max_attempts: dict[str, int]


class PathsConfig(TypedDict):
    artifact_root: str
    state_db: str
    output_root: str


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stderr: bool
    redact_secrets: bool


class ProfileOverlay(TypedDict, total=False):
    router: dict[str, object]
    intent: dict[str, object]
    retry: dict[str, object]
    paths: dict[str, object]
    observability: dict[str, object]


class PipelineConfig(TypedDict):
    meta: MetaConfig
    router: RouterConfig
    intent: IntentConfig
    retry: RetryConfig
    paths: PathsConfig
    observability: ObservabilityConfig
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[PipelineConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "router": {
        "max_cost": DEFAULT_MAX_COST,
        "max_files": DEFAULT_MAX_FILES,
        "max_bytes": DEFAULT_MAX_BYTES,
        "enable_caching": True,
        "cache_ttl_seconds": DEFAULT_CACHE_TTL_SECONDS,
        "validate_on_load": True,
        "default_size_estimate": DEFAULT_SIZE_ESTIMATE,
    },
    "intent": {
        "confidence_threshold": CLARIFICATION_CONFIDENCE_THRESHOLD,
        "contract_version": CONTRACT_VERSION,
    },
    "retry": {
        "initial_delay_seconds": 0.5,
        "multiplier": 2.0,
        "max_delay_seconds": 8.0,
        "stage_max_attempts": {
            "init": 1,
            "interpret_intent": 3,
            "match_capability": 3,
            "generate_spec": 2,
            "validate_rules": 1,
            "final_validate": 1,
            "generate_code": 2,
            "package": 1,
        },
    },
    "paths": {
        "artifact_root": BUNDLED_ARTIFACT_ROOT,
        "state_db": "state/intentforge.sqlite",
        "output_root": "out/",
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs/",
        "log_to_stderr": False,
        "redact_secrets": True,
    },
    "profiles": {
        "strict": {
            "router": {"max_cost": 4000, "max_files": 6},
            "intent": {"confidence_threshold": 0.75},
        },
        "lenient": {
            "router": {"max_cost": 12000, "max_files": 20},
            "retry": {"stage_max_attempts": {"interpret_intent": 5, "generate_spec": 3}},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        rendered = (
            "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
            or "unknown validation failure"
        )
        super().__init__(f"invalid config:\n{rendered}")


FieldKind = Literal["int", "float", "bool", "path", "log_level", "version", "attempts"]


@dataclass(frozen=True, slots=True)
class _Field:
    kind: FieldKind
    minimum: float | None = None
    maximum: float | None = None


# One entry per section; a field listed here is both allowed and required in a full config.
_SECTIONS: Final[dict[str, dict[str, _Field]]] = {
    "meta": {"schema_version": _Field("int", minimum=1)},
    "router": {
        "max_cost": _Field("int", minimum=1),
        "max_files": _Field("int", minimum=1),
        "max_bytes": _Field("int", minimum=1),
        "enable_caching": _Field("bool"),
        "cache_ttl_seconds": _Field("float", minimum=0.0),
        "validate_on_load": _Field("bool"),
        "default_size_estimate": _Field("int", minimum=1),
    },
    "intent": {
        "confidence_threshold": _Field("float", minimum=0.0, maximum=1.0),
        "contract_version": _Field("version"),
    },
    "retry": {
        "initial_delay_seconds": _Field("float", minimum=0.0),
        "multiplier": _Field("float", minimum=1.0),
        "max_delay_seconds": _Field("float", minimum=0.0),
        "stage_max_attempts": _Field("attempts"),
    },
    "paths": {
        "artifact_root": _Field("path"),
        "state_db": _Field("path"),
        "output_root": _Field("path"),
    },
    "observability": {
        "log_level": _Field("log_level"),
        "log_dir": _Field("path"),
        "log_to_stderr": _Field("bool"),
        "redact_secrets": _Field("bool"),
    },
}
_LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "ERROR", "INFO", "WARNING")


def default_config() -> PipelineConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade intentforge.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the intentforge runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto ``base`` without mutating either; keys come out sorted."""

    merged: dict[str, Any] = {}
    for key in sorted({*base, *overlay}):
        low, high = base.get(key), overlay.get(key)
        if key not in overlay:
            merged[key] = merge_config(low, {}) if isinstance(low, Mapping) else copy.deepcopy(low)
        elif isinstance(high, Mapping):
            merged[key] = merge_config(low if isinstance(low, Mapping) else {}, high)
        else:
            merged[key] = copy.deepcopy(high)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Merge the named entry of ``config["profiles"]`` over ``config`` and re-validate."""

    selected = (profile or "").strip()
    if not selected:
        return merge_config(config, {})
    profiles = config.get("profiles")
    overlay = profiles.get(selected) if isinstance(profiles, Mapping) else None
    if overlay is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )
    return assert_valid_config(merge_config(config, overlay))


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate a full config; issue paths are dotted and reported in sorted key order."""

    issues: list[ConfigValidationIssue] = []
    if not isinstance(config, Mapping):
        issues.append(
            ConfigValidationIssue("<root>", f"expected object, got {type(config).__name__}")
        )
        return ConfigValidationResult(config=None, issues=tuple(issues))

    normalized: dict[str, Any] = {}
    _check_keys(config, set(_SECTIONS) | {"profiles"}, "", issues, required=set(_SECTIONS))
    for name in _SECTIONS:
        if name in config:
            section = _check_section(name, config[name], name, issues, partial=False)
            if section is not None:
                normalized[name] = section
    if "profiles" in config:
        profiles = _check_profiles(config["profiles"], issues)
        if profiles is not None:
            normalized["profiles"] = profiles

    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Copy of ``config`` with every secret-looking key replaced by ``<redacted>``."""

    if not isinstance(config, Mapping):
        return {}
    return {
        key: "<redacted>" if _looks_sensitive_key(str(key)) else _redact(config[key])
        for key in sorted(config)
    }


# ---------------------------------------------------------------------------
# Validation internals
# ---------------------------------------------------------------------------


def _check_section(
    name: str,
    raw: object,
    path: str,
    issues: list[ConfigValidationIssue],
    *,
    partial: bool,
) -> dict[str, Any] | None:
    if not isinstance(raw, Mapping):
        issues.append(ConfigValidationIssue(path, f"expected object, got {type(raw).__name__}"))
        return None
    fields = _SECTIONS[name]
    _check_keys(raw, set(fields), path, issues, required=set() if partial else set(fields))

    out: dict[str, Any] = {}
    for key, spec in fields.items():
        if key not in raw:
            continue
        value = _coerce(spec, raw[key], f"{path}.{key}", issues)
        if value is not None:
            out[key] = value

    version = out.get("schema_version")
    if name == "meta" and version is not None and version != ConfigSchemaVersion:
        issues.append(ConfigValidationIssue(f"{path}.schema_version", migration_guidance(version)))
    initial, ceiling = out.get("initial_delay_seconds"), out.get("max_delay_seconds")
    if initial is not None and ceiling is not None and initial > ceiling:
        issues.append(
            ConfigValidationIssue(
                f"{path}.initial_delay_seconds", "must be <= retry.max_delay_seconds"
            )
        )
    return out


def _check_profiles(
    raw: object, issues: list[ConfigValidationIssue]
) -> dict[str, Any] | None:
    if not isinstance(raw, Mapping):
        issues.append(ConfigValidationIssue("profiles", "expected object"))
        return None
    overlay_sections = [name for name in _SECTIONS if name != "meta"]
    out: dict[str, Any] = {}
    for profile_name in sorted(raw):
        path = f"profiles.{profile_name}"
        overlay = raw[profile_name]
        if not _PROFILE_NAME_PATTERN.fullmatch(str(profile_name)):
            issues.append(ConfigValidationIssue(path, "profile name must match ^[a-z][a-z0-9_-]*$"))
            continue
        if not isinstance(overlay, Mapping):
            issues.append(ConfigValidationIssue(path, "profile overlay must be an object"))
            continue
        _check_keys(overlay, set(overlay_sections), path, issues, required=set())
        parsed: dict[str, Any] = {}
        for name in overlay_sections:
            if name in overlay:
                section = _check_section(
                    name, overlay[name], f"{path}.{name}", issues, partial=True
                )
                if section is not None:
                    parsed[name] = section
        out[profile_name] = parsed
    return out


def _coerce(
    spec: _Field, value: object, path: str, issues: list[ConfigValidationIssue]
) -> Any:
    """Return the normalized value, or ``None`` after recording an issue."""

    def fail(message: str) -> None:
        issues.append(ConfigValidationIssue(path, message))

    kind = spec.kind
    if kind == "attempts":
        return _coerce_attempts(value, path, issues)
    if kind == "bool":
        if isinstance(value, bool):
            return value
        return fail(f"expected boolean, got {type(value).__name__}")
    if kind in {"int", "float"}:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            label = "integer" if kind == "int" else "number"
            return fail(f"expected {label}, got {type(value).__name__}")
        if kind == "int" and not isinstance(value, int):
            return fail(f"expected integer, got {type(value).__name__}")
        number = value if kind == "int" else float(value)
        if not math.isfinite(number):
            return fail("must be finite")
        if spec.minimum is not None and number < spec.minimum:
            return fail(f"must be >= {spec.minimum:g}")
        if spec.maximum is not None and number > spec.maximum:
            return fail(f"must be <= {spec.maximum:g}")
        return number

    if not isinstance(value, str):
        return fail(f"expected string, got {type(value).__name__}")
    text = value.strip()
    if not text:
        return fail("must not be empty")
    if kind == "path" and "\x00" in text:
        return fail("must not contain NUL bytes")
    if kind == "version" and not _CONTRACT_VERSION_PATTERN.fullmatch(text):
        return fail("must be MAJOR.MINOR (example: 1.0)")
    if kind == "log_level" and text not in _LOG_LEVELS:
        return fail(f"invalid value {text!r}; expected one of: {', '.join(_LOG_LEVELS)}")
    return text


def _coerce_attempts(
    value: object, path: str, issues: list[ConfigValidationIssue]
) -> dict[str, int] | None:
    if not isinstance(value, Mapping):
        issues.append(ConfigValidationIssue(path, f"expected object, got {type(value).__name__}"))
        return None
    _check_keys(value, set(STAGE_NAMES), path, issues, required=set())
    attempts: dict[str, int] = {}
    for stage in STAGE_NAMES:
        if stage not in value:
            continue
        stage_path = f"{path}.{stage}"
        parsed = _coerce(_Field("int", minimum=1), value[stage], stage_path, issues)
        if parsed is None:
            continue
        if stage in DETERMINISTIC_STAGES and parsed != 1:
            issues.append(
                ConfigValidationIssue(stage_path, "deterministic stages must not retry (use 1)")
            )
            continue
        attempts[stage] = parsed
    return attempts


def _check_keys(
    payload: Mapping[Any, object],
    allowed: set[str],
    path: str,
    issues: list[ConfigValidationIssue],
    *,
    required: set[str],
) -> None:
    prefix = f"{path}." if path else ""
    for key in sorted(str(item) for item in payload):
        if key in allowed:
            continue
        message = (
            "embedded secret values are forbidden" if _looks_sensitive_key(key) else "unknown field"
        )
        issues.append(ConfigValidationIssue(prefix + key, message))
    for key in sorted(required - {str(item) for item in payload}):
        issues.append(ConfigValidationIssue(prefix + key, "missing required field"))


def _looks_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    tokens = {token for token in re.split(r"[^a-z0-9]+", lowered) if token}
    return bool(tokens & _SENSITIVE_KEY_TOKENS) or "api_key" in lowered


def _redact(value: object) -> object:
    if isinstance(value, Mapping):
        return redact_config(value)
    if isinstance(value, (list, tuple)):
        return [_redact(item) for item in value]
    return value


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "DEFAULT_CONFIG",
    "DETERMINISTIC_STAGES",
    "PATH_FIELDS",
    "STAGE_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "PipelineConfig",
    "ProfileOverlay",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
