"""
intentforge — offline collaborators

File: src/intentforge/control_plane/offline.py
Last updated: 2026-10-18

Purpose
- Deterministic, network-free implementations of every collaborator so a build can run end
  to end from the artifact store alone.

What should be included in this file
- Keyword intent interpreter driven by the intent-mapping and ambiguity-resolution artifacts.
- Capability source backed by the context router.
- Spec generator deriving a component specification from intent plus capability.
- Local executor rendering the generation plan with jinja2 and packaging a reproducible zip.

Functional requirements
- Same inputs produce byte-identical outputs (including the zip archive).
- Interpreter never guesses a component type; unknown requests ask for clarification.

Non-functional requirements
- No network access and no wall-clock input.
"""

from __future__ import annotations

import copy
import re
import zipfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from jinja2 import Environment, StrictUndefined, TemplateError

from intentforge.constants import CONTRACT_VERSION, DEFAULT_NAMESPACE
from intentforge.context_plane.artifact_store import ArtifactStore
from intentforge.context_plane.router import ContextRouter
from intentforge.control_plane.collaborators import BuildArtifact, GeneratedFiles
from intentforge.control_plane.generation_plan import GenerationPlan
from intentforge.domain.errors import ArtifactNotFoundError, FatalError
from intentforge.domain.models import Capability, IntentResult, Task
from intentforge.utils.hashing import sha256_file

_TOKEN_RE: Final[re.Pattern[str]] = re.compile(r"[a-z0-9]+(?:-[a-z0-9]+)*")
_NUMERIC_RE: Final[re.Pattern[str]] = re.compile(r"^(\d+)(?:-([a-z]+))?$")
_ZIP_TIMESTAMP: Final[tuple[int, int, int, int, int, int]] = (1980, 1, 1, 0, 0, 0)
TEMPLATE_DIR: Final[str] = "templates"


# -- intent interpretation ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class _Match:
    kind: str
    index: int
    value: Mapping[str, Any]
    phrase: str


class KeywordIntentInterpreter:
    """Map request text onto a candidate intent using the routed mapping artifacts."""

    def __init__(
        self,
        mapping_rules: Mapping[str, Any],
        ambiguity_rules: Mapping[str, Any],
        *,
        version: str = CONTRACT_VERSION,
    ) -> None:
        self._component_types: list[Mapping[str, Any]] = list(
            mapping_rules.get("component_types", [])
        )
        self._modifiers: list[Mapping[str, Any]] = list(mapping_rules.get("modifiers", []))
        self._stopwords = frozenset(str(item) for item in mapping_rules.get("stopwords", []))
        self._base_confidence = float(mapping_rules.get("base_confidence", 0.5))
        self._defaults: Mapping[str, Any] = ambiguity_rules.get("defaults", {})
        self._threshold = float(ambiguity_rules.get("clarification_threshold", 0.6))
        self._conflict_penalty = float(ambiguity_rules.get("conflict_penalty", 0.3))
        self._questions: Mapping[str, str] = ambiguity_rules.get("questions", {})
        self._version = version

    @classmethod
    def from_router(cls, router: ContextRouter) -> KeywordIntentInterpreter:
        context = router.route(Task.INTERPRET_INTENT)
        return cls(
            context.require("intent_mapping_rules"), context.require("ambiguity_resolution_rules")
        )

    def interpret(self, raw_text: str) -> IntentResult:
        tokens = _TOKEN_RE.findall(raw_text.lower())
        meaningful = [index for index, token in enumerate(tokens) if token not in self._stopwords]
        matches, consumed = self._match(tokens)

        component = next((m for m in matches if m.kind == "component"), None)
        modifiers = [m for m in matches if m.kind == "modifier"]
        unmapped = tuple(tokens[index] for index in meaningful if index not in consumed)
        mapped_share = (
            len([index for index in meaningful if index in consumed]) / len(meaningful)
            if meaningful
            else 0.0
        )

        question: str | None = None
        if component is None:
            confidence = round(0.35 * mapped_share, 2)
            question = self._questions.get("no_component_type")
        else:
            confidence = round(self._base_confidence + 0.45 * mapped_share, 2)
            conflicts = self._conflicting_phrases(modifiers)
            if conflicts:
                confidence = round(max(0.0, confidence - self._conflict_penalty), 2)
                template = self._questions.get("conflict", "")
                question = template.format(phrases=", ".join(conflicts)) or None

        needs_clarification = component is None or confidence < self._threshold
        if needs_clarification and question is None:
            question = self._questions.get("low_confidence")

        candidate = None
        if not needs_clarification and component is not None:
            candidate = self._build_intent(component, modifiers, tokens)
        return IntentResult(
            candidate_intent=candidate,
            confidence=confidence,
            unmapped_phrases=unmapped,
            needs_clarification=needs_clarification,
            version=self._version,
            clarification_question=question if needs_clarification else None,
        )

    def _match(self, tokens: Sequence[str]) -> tuple[list[_Match], set[int]]:
        matches: list[_Match] = []
        consumed: set[int] = set()
        phrases = sorted(
            (
                (tuple(_TOKEN_RE.findall(str(phrase).lower())), modifier)
                for modifier in self._modifiers
                for phrase in modifier.get("phrases", [])
            ),
            key=lambda item: -len(item[0]),
        )
        for words, modifier in phrases:
            if not words:
                continue
            for start in range(len(tokens) - len(words) + 1):
                span = range(start, start + len(words))
                window = tuple(tokens[start : start + len(words)])
                if window == words and consumed.isdisjoint(span):
                    consumed.update(span)
                    matches.append(_Match("modifier", start, modifier, " ".join(words)))

        for index, token in enumerate(tokens):
            if index in consumed:
                continue
            numeric = _NUMERIC_RE.fullmatch(token)
            word = numeric.group(2) if numeric else token
            for entry in self._component_types:
                keywords = {str(item) for item in entry.get("keywords", [])}
                if word in keywords:
                    consumed.add(index)
                    matches.append(_Match("component", index, entry, token))
                    break
            else:
                if numeric and numeric.group(2) is None:
                    consumed.add(index)
                    matches.append(_Match("number", index, {}, token))
        matches.sort(key=lambda item: item.index)
        return matches, consumed

    @staticmethod
    def _conflicting_phrases(modifiers: Sequence[_Match]) -> list[str]:
        by_group: dict[str, list[_Match]] = {}
        for match in modifiers:
            group = match.value.get("group")
            if group:
                by_group.setdefault(str(group), []).append(match)
        conflicts: list[str] = []
        for group in sorted(by_group):
            distinct = {id(item.value) for item in by_group[group]}
            if len(distinct) > 1:
                conflicts.extend(item.phrase for item in by_group[group])
        return conflicts

    def _build_intent(
        self, component: _Match, modifiers: Sequence[_Match], tokens: Sequence[str]
    ) -> dict[str, Any]:
        entry = component.value
        intent: dict[str, Any] = copy.deepcopy(dict(self._defaults))
        intent["component_type"] = str(entry["component_type"])
        intent["classification"] = str(entry.get("classification", "input"))
        ui_intent = intent.setdefault("ui_intent", {})
        ui_intent["primary_purpose"] = str(entry.get("primary_purpose", entry["component_type"]))

        features: list[str] = [str(item) for item in entry.get("default_features", [])]
        for match in modifiers:
            for dotted, value in sorted(match.value.get("set", {}).items()):
                _assign(intent, str(dotted), copy.deepcopy(value))
            for feature in match.value.get("features", []):
                if feature not in features:
                    features.append(str(feature))
        intent["features"] = features

        customization = entry.get("numeric_customization")
        if customization:
            for token in tokens:
                numeric = _NUMERIC_RE.fullmatch(token)
                if numeric:
                    intent.setdefault("customizations", {})[str(customization)] = int(
                        numeric.group(1)
                    )
                    break
        return intent


def _assign(target: dict[str, Any], dotted: str, value: Any) -> None:
    *parents, leaf = dotted.split(".")
    node = target
    for part in parents:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[leaf] = value


# -- capability lookup ----------------------------------------------------------------------


class ArtifactCapabilitySource:
    """Capability lookup through the router's ``load_capability`` task."""

    def __init__(self, router: ContextRouter) -> None:
        self._router = router

    def get(self, capability_id: str) -> Capability | None:
        try:
            context = self._router.route(Task.LOAD_CAPABILITY, {"capability_id": capability_id})
        except ArtifactNotFoundError:
            return None
        capability = context.require("capability")
        return capability if isinstance(capability, Capability) else None


# -- specification generation ---------------------------------------------------------------


def pascal_case(value: str) -> str:
    parts = re.split(r"[^A-Za-z0-9]+", value)
    return "".join(part[:1].upper() + part[1:] for part in parts if part)


def camel_case(value: str) -> str:
    name = pascal_case(value)
    return name[:1].lower() + name[1:]


class DeterministicSpecGenerator:
    """Derive a component specification from an accepted intent and its capability."""

    def __init__(
        self, *, namespace: str = DEFAULT_NAMESPACE, version: str = CONTRACT_VERSION
    ) -> None:
        self._namespace = namespace
        self._version = version

    def generate(self, intent: Mapping[str, Any], capability: Capability) -> dict[str, Any]:
        name = pascal_case(capability.capability_id)
        display_name = capability.display_name
        behavior = intent.get("behavior", {})
        interaction = intent.get("interaction", {})
        accessibility = intent.get("accessibility", {})
        ui_intent = intent.get("ui_intent", {})
        interactivity = str(behavior.get("interactivity", "editable"))
        customizations = dict(sorted(dict(intent.get("customizations", {})).items()))
        purpose = str(ui_intent.get("primary_purpose", capability.capability_id))

        properties: list[dict[str, Any]] = [
            {
                "name": "value",
                "display_name": "Value",
                "data_type": "Decimal",
                "usage": "bound",
                "required": True,
                "description": f"Bound value of the {display_name.lower()}.",
            }
        ]
        for key in customizations:
            properties.append(
                {
                    "name": camel_case(key),
                    "display_name": pascal_case(key),
                    "data_type": "Whole.None",
                    "usage": "input",
                    "required": False,
                    "description": f"Configured {key} for the component.",
                }
            )

        return {
            "version": self._version,
            "component_type": capability.capability_id,
            "component_name": name,
            "namespace": self._namespace,
            "display_name": display_name,
            "description": f"{display_name} component to {purpose} ({interactivity}).",
            "interactivity": interactivity,
            "capabilities": {
                "capability_id": capability.capability_id,
                "features": [str(item) for item in intent.get("features", [])],
                "customizations": customizations,
            },
            "properties": properties,
            "resources": {
                "code": "index.ts",
                "css": [f"css/{name}.css"],
                "resx": [f"strings/{name}.resx"],
            },
            "events": ["OnChange"] if interactivity != "read-only" else [],
            "visual": {
                "style": str(ui_intent.get("visual_style", "standard")),
                "density": "normal",
            },
            "interaction": {
                "control_type": "display" if interactivity == "read-only" else "input",
                "hover_effect": interactivity != "read-only",
                "input_methods": [str(item) for item in interaction.get("input_method", [])],
            },
            "accessibility": {
                "aria_label": display_name,
                "keyboard_support": bool(accessibility.get("keyboard_navigable", False)),
            },
            "responsiveness": {
                "target": "all",
                "adaptive_layout": bool(intent.get("responsiveness", {}).get("adaptive_layout")),
            },
        }


# -- code generation and packaging ----------------------------------------------------------


class LocalCodeBuildExecutor:
    """Render plan templates from the artifact store and package them as a reproducible zip."""

    def __init__(self, store: ArtifactStore, *, source_dir_name: str = "src") -> None:
        self._store = store
        self._source_dir_name = source_dir_name
        self._environment = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            newline_sequence="\n",
            keep_trailing_newline=True,
        )

    def generate_code(
        self, spec: Mapping[str, Any], plan: GenerationPlan, output_dir: Path
    ) -> GeneratedFiles:
        source_root = Path(output_dir) / self._source_dir_name
        written: list[str] = []
        variables = {"spec": spec, "plan": plan.to_dict(), "component_name": plan.component_name}
        for step in plan.steps:
            template_path = f"{TEMPLATE_DIR}/{step.template_name}"
            try:
                source = self._store.read_bytes(template_path).decode("utf-8")
            except ArtifactNotFoundError:
                if step.required:
                    raise
                continue
            try:
                rendered = self._environment.from_string(source).render(**variables)
            except TemplateError as exc:
                raise FatalError(
                    f"template {template_path} failed to render: {exc}", code="template_render"
                ) from exc
            target = source_root / step.output_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(rendered, encoding="utf-8", newline="\n")
            written.append(step.output_path)
        return GeneratedFiles(output_dir=str(source_root), files=tuple(written))

    def package(
        self,
        spec: Mapping[str, Any],
        files: GeneratedFiles,
        output_dir: Path,
        artifact_name: str,
    ) -> BuildArtifact:
        destination = Path(output_dir) / artifact_name
        destination.parent.mkdir(parents=True, exist_ok=True)
        source_root = Path(files.output_dir)
        with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for relative in sorted(files.files):
                info = zipfile.ZipInfo(relative, date_time=_ZIP_TIMESTAMP)
                info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = 0o644 << 16
                archive.writestr(info, (source_root / relative).read_bytes())
        return BuildArtifact(
            artifact_name=artifact_name,
            artifact_path=str(destination),
            sha256=sha256_file(destination),
            size_bytes=destination.stat().st_size,
        )


@dataclass(frozen=True, slots=True)
class OfflineCollaborators:
    interpreter: KeywordIntentInterpreter
    capability_source: ArtifactCapabilitySource
    spec_generator: DeterministicSpecGenerator
    executor: LocalCodeBuildExecutor


def offline_collaborators(
    router: ContextRouter, store: ArtifactStore, *, namespace: str = DEFAULT_NAMESPACE
) -> OfflineCollaborators:
    return OfflineCollaborators(
        interpreter=KeywordIntentInterpreter.from_router(router),
        capability_source=ArtifactCapabilitySource(router),
        spec_generator=DeterministicSpecGenerator(namespace=namespace),
        executor=LocalCodeBuildExecutor(store),
    )


__all__ = [
    "ArtifactCapabilitySource",
    "DeterministicSpecGenerator",
    "KeywordIntentInterpreter",
    "LocalCodeBuildExecutor",
    "OfflineCollaborators",
    "camel_case",
    "offline_collaborators",
    "pascal_case",
]
