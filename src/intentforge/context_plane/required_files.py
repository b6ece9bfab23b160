"""
intentforge — static routing table

File: src/intentforge/context_plane/required_files.py
Last updated: 2026-10-18

Purpose
- Map each routing task to the fixed list of artifacts it may see, and price each artifact.

What should be included in this file
- Per-task artifact entries: context key, path template, declared shape, optional flag.
- Typed placeholder substitution for ``capability_id``, ``schema_name``, ``prompt_name``.
- Static token-equivalent size table with a default estimate for unknown paths.

Functional requirements
- Resolution is a pure function of ``(task, parameters)``; no I/O happens here.
- A required placeholder without a parameter fails before any path is built.
- Substituted values must be single safe path segments.

Non-functional requirements
- Tables are immutable and audited by review; no path is ever computed from user text alone.
"""

from __future__ import annotations

import re
import string
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Final

from intentforge.constants import DEFAULT_SIZE_ESTIMATE
from intentforge.domain.errors import InvalidParameterError, MissingParameterError
from intentforge.domain.models import ArtifactShape, Task

ROUTING_PARAMETERS: Final[frozenset[str]] = frozenset(
    {"capability_id", "schema_name", "prompt_name"}
)

_SAFE_SEGMENT_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")
_FORMATTER: Final[string.Formatter] = string.Formatter()


@dataclass(frozen=True, slots=True)
class ArtifactEntry:
    """One row of the routing table: where an artifact lives and how it is decoded."""

    key: str
    template: str
    shape: ArtifactShape
    optional: bool = False

    @property
    def placeholders(self) -> tuple[str, ...]:
        return tuple(
            field_name
            for _, field_name, _, _ in _FORMATTER.parse(self.template)
            if field_name is not None
        )


@dataclass(frozen=True, slots=True)
class ResolvedArtifact:
    key: str
    path: str
    shape: ArtifactShape
    optional: bool = False


_GLOBAL_INTENT_SCHEMA = "schemas/global-intent.schema.json"
_COMPONENT_SPEC_SCHEMA = "schemas/component-spec.schema.json"
_CAPABILITY_TEMPLATE = "capabilities/{capability_id}.capability.json"

REQUIRED_ARTIFACTS: Final[Mapping[Task, tuple[ArtifactEntry, ...]]] = MappingProxyType(
    {
        Task.INTERPRET_INTENT: (
            ArtifactEntry("schema", _GLOBAL_INTENT_SCHEMA, ArtifactShape.JSON_SCHEMA),
            ArtifactEntry(
                "intent_mapping_rules", "intent/intent-mapping.rules.json", ArtifactShape.JSON
            ),
            ArtifactEntry(
                "ambiguity_resolution_rules",
                "intent/ambiguity-resolution.rules.json",
                ArtifactShape.JSON,
            ),
        ),
        Task.MATCH_CAPABILITY: (
            ArtifactEntry("registry", "capabilities/registry.index.json", ArtifactShape.JSON),
            ArtifactEntry(
                "capability", _CAPABILITY_TEMPLATE, ArtifactShape.CAPABILITY, optional=True
            ),
        ),
        Task.GENERATE_COMPONENT_SPEC: (
            ArtifactEntry("schema", _COMPONENT_SPEC_SCHEMA, ArtifactShape.JSON_SCHEMA),
            ArtifactEntry("capability", _CAPABILITY_TEMPLATE, ArtifactShape.CAPABILITY),
        ),
        Task.VALIDATE_RULES: (
            ArtifactEntry("core_rules", "rules/core.rules.yaml", ArtifactShape.RULE_SET),
            ArtifactEntry(
                "accessibility_rules", "rules/accessibility.rules.yaml", ArtifactShape.RULE_SET
            ),
        ),
        Task.VALIDATE_FINAL: (
            ArtifactEntry("schema", _COMPONENT_SPEC_SCHEMA, ArtifactShape.JSON_SCHEMA),
            ArtifactEntry("capability", _CAPABILITY_TEMPLATE, ArtifactShape.CAPABILITY),
        ),
        Task.LOAD_SCHEMA: (
            ArtifactEntry("schema", "schemas/{schema_name}", ArtifactShape.JSON_SCHEMA),
        ),
        Task.LOAD_CAPABILITY: (
            ArtifactEntry("capability", _CAPABILITY_TEMPLATE, ArtifactShape.CAPABILITY),
        ),
        Task.LOAD_PROMPT: (ArtifactEntry("prompt", "prompts/{prompt_name}", ArtifactShape.TEXT),),
    }
)

# Token-equivalent cost per artifact path.
SIZE_TABLE: Final[Mapping[str, int]] = MappingProxyType(
    {
        _GLOBAL_INTENT_SCHEMA: 1200,
        _COMPONENT_SPEC_SCHEMA: 1500,
        "intent/intent-mapping.rules.json": 800,
        "intent/ambiguity-resolution.rules.json": 900,
        "capabilities/registry.index.json": 500,
        "capabilities/star-rating.capability.json": 1500,
        "rules/core.rules.yaml": 1500,
        "rules/accessibility.rules.yaml": 1000,
        "prompts/intent-interpreter.prompt.md": 700,
    }
)


def coerce_task(task: Task | str) -> Task:
    """Return ``task`` as a ``Task``; unknown names are rejected before any path is built."""

    if isinstance(task, Task):
        return task
    try:
        return Task(task)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in Task)
        raise ValueError(f"unknown task {task!r}; expected one of: {allowed}") from exc


def resolve_required_files(
    task: Task | str,
    parameters: Mapping[str, str] | None = None,
    *,
    table: Mapping[Task, tuple[ArtifactEntry, ...]] = REQUIRED_ARTIFACTS,
) -> tuple[ResolvedArtifact, ...]:
    """Resolve the ordered artifact list for ``task`` with placeholders substituted."""

    parsed_task = coerce_task(task)
    params = dict(parameters or {})
    entries = table.get(parsed_task)
    if entries is None:
        raise ValueError(f"no routing entry for task {parsed_task.value}")

    resolved: list[ResolvedArtifact] = []
    for entry in entries:
        substitutions: dict[str, str] = {}
        skipped = False
        for name in entry.placeholders:
            value = params.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                if entry.optional:
                    skipped = True
                    break
                raise MissingParameterError(parsed_task.value, name)
            substitutions[name] = _safe_segment(parsed_task, name, value)
        if skipped:
            continue
        resolved.append(
            ResolvedArtifact(
                key=entry.key,
                path=entry.template.format(**substitutions),
                shape=entry.shape,
                optional=entry.optional,
            )
        )
    return tuple(resolved)


def estimate_cost(
    path: str,
    *,
    size_table: Mapping[str, int] = SIZE_TABLE,
    default: int = DEFAULT_SIZE_ESTIMATE,
) -> int:
    return size_table.get(path, default)


def _safe_segment(task: Task, name: str, value: object) -> str:
    if not isinstance(value, str):
        raise InvalidParameterError(task.value, name, repr(value))
    candidate = value.strip()
    if not _SAFE_SEGMENT_RE.fullmatch(candidate) or ".." in candidate:
        raise InvalidParameterError(task.value, name, candidate)
    return candidate


__all__ = [
    "REQUIRED_ARTIFACTS",
    "ROUTING_PARAMETERS",
    "SIZE_TABLE",
    "ArtifactEntry",
    "ResolvedArtifact",
    "coerce_task",
    "estimate_cost",
    "resolve_required_files",
]
